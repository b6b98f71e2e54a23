from __future__ import annotations

import os


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def is_alnum_ascii(s: str) -> bool:
    """True if every character is an ASCII letter or digit.

    Unlike str.isalnum(), non-ASCII letters are rejected.
    """
    for ch in s:
        if not ("a" <= ch <= "z" or "A" <= ch <= "Z" or "0" <= ch <= "9"):
            return False
    return True


def normalize_room(value, *, max_len: int = 64) -> str:
    if not isinstance(value, str):
        raise ValueError("room name must be a string")

    r = value.strip()
    if not r:
        raise ValueError("room name must not be empty")
    if max_len and len(r) > int(max_len):
        raise ValueError("room name too long")

    # Room names travel inside single-token commands; no embedded whitespace.
    if any(ch.isspace() for ch in r) or "\x00" in r:
        raise ValueError("room name must be a single word")

    return r
