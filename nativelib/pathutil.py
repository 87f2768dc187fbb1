from __future__ import annotations

import string


_SAFE_FILENAME_CHARS = frozenset(string.ascii_letters + string.digits + "+,-./=_")


def is_filename_safe(name: str) -> bool:
    """Return True when ``name`` only uses the safe filename alphabet.

    Rules:
    - Letters, digits and ``+ , - . / = _`` are allowed
    - A NUL character ends the name; whatever follows is not inspected
    - The empty name is safe
    """
    for ch in name:
        if ch == "\x00":
            return True
        if ch not in _SAFE_FILENAME_CHARS:
            return False
    return True
