from __future__ import annotations

import re
import unicodedata

_DIGIT_RUN = re.compile(r"(\d+)")


def natural_key(name: str) -> tuple[object, ...]:
    """Sort key that orders embedded numbers by value, ignoring case.

    ``re.split`` with a capturing group always yields text at even indices
    and digit runs at odd indices, so keys of different names never compare
    an int against a str.
    """
    normalized = unicodedata.normalize("NFKC", name or "").casefold()
    parts = _DIGIT_RUN.split(normalized)
    key: list[object] = []
    for index, part in enumerate(parts):
        if index % 2:
            key.append(int(part))
        else:
            key.append(part)
    return tuple(key)


def natural_sort_key(name: str) -> tuple[object, ...]:
    # Raw name breaks ties ("B" vs "b", "01" vs "1") so the order stays total.
    return (natural_key(name), name or "")


def natural_compare(a: str, b: str) -> int:
    left = natural_sort_key(a)
    right = natural_sort_key(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


__all__ = ["natural_key", "natural_sort_key", "natural_compare"]
