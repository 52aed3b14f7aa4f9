from __future__ import annotations

from urllib.parse import quote


def build_badge_svg(label: str = "SH", *, accent: str = "#3b82f6") -> str:
    """Return a square SVG badge with a play triangle and a short label."""
    text = ((label or "SH").strip() or "SH")[:2]
    return f"""<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64" role="img" aria-label="{text}">
  <rect width="64" height="64" rx="14" ry="14" fill="#090b12" />
  <path d="M14 16 L30 26 L14 36 Z" fill="{accent}" />
  <text x="40" y="50" text-anchor="middle" font-family="'Segoe UI', sans-serif"
        font-size="20" font-weight="700" fill="#f5f5f5">{text}</text>
</svg>"""


def badge_data_url(label: str = "SH", *, accent: str = "#3b82f6") -> str:
    return "data:image/svg+xml," + quote(build_badge_svg(label, accent=accent))


FAVICON_URL = badge_data_url()


__all__ = ["FAVICON_URL", "badge_data_url", "build_badge_svg"]
