from __future__ import annotations

import os
import time

from .constants import (
    K_BODY,
    K_ID,
    K_KIND,
    K_SRC,
    K_T,
    K_TS,
    K_V,
    RCHAT_VERSION,
    T_COMMAND,
    T_EVENT,
)


def now_ms() -> int:
    return int(time.time() * 1000)


def msg_id() -> bytes:
    return os.urandom(8)


def make_envelope(
    msg_type: int,
    *,
    src: str | None = None,
    kind: int | None = None,
    body=None,
    mid: bytes | None = None,
    ts: int | None = None,
) -> dict:
    env: dict[int, object] = {
        K_V: RCHAT_VERSION,
        K_T: int(msg_type),
        K_ID: mid or msg_id(),
        K_TS: now_ms() if ts is None else ts,
    }
    if src is not None:
        env[K_SRC] = src
    if kind is not None:
        env[K_KIND] = int(kind)
    if body is not None:
        env[K_BODY] = body
    return env


def validate_envelope(env: dict) -> None:
    if not isinstance(env, dict):
        raise TypeError("envelope must be a CBOR map (dict)")

    for k in env.keys():
        if not isinstance(k, int):
            raise TypeError("envelope keys must be integers")
        if k < 0:
            raise ValueError("envelope keys must be unsigned integers")

    for k in (K_V, K_T, K_ID, K_TS):
        if k not in env:
            raise ValueError(f"missing envelope key {k}")

    v = env[K_V]
    if not isinstance(v, int):
        raise TypeError("protocol version must be an integer")
    if v != RCHAT_VERSION:
        raise ValueError(f"unsupported version {v}")

    t = env[K_T]
    if not isinstance(t, int):
        raise TypeError("message type must be an integer")

    mid = env[K_ID]
    if not isinstance(mid, (bytes, bytearray)):
        raise TypeError("message id must be bytes")

    ts = env[K_TS]
    if not isinstance(ts, int):
        raise TypeError("timestamp must be an integer")
    if ts < 0:
        raise ValueError("timestamp must be unsigned")

    body = env.get(K_BODY, "")
    if not isinstance(body, str):
        raise TypeError("body must be a text string")

    if t == T_COMMAND:
        if K_KIND not in env:
            raise ValueError("command is missing its kind")
        if not isinstance(env[K_KIND], int):
            raise TypeError("command kind must be an integer")
    elif t == T_EVENT:
        src = env.get(K_SRC)
        if not isinstance(src, str):
            raise TypeError("sender id must be a string")
        if src == "":
            raise ValueError("sender id must not be empty")
    else:
        raise ValueError(f"unknown message type {t}")
