from __future__ import annotations

import cbor2

from .constants import MAX_FRAME_BYTES


def encode(obj) -> bytes:
    return cbor2.dumps(obj)


def decode(data: bytes, *, max_bytes: int = MAX_FRAME_BYTES):
    """Decode one CBOR frame.

    Raises TypeError for non-bytes input and ValueError for oversized or
    malformed frames, whatever the installed cbor2 version raises.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError("frame must be bytes")
    if max_bytes and len(data) > max_bytes:
        raise ValueError(f"frame too large: {len(data)} > {max_bytes}")
    try:
        return cbor2.loads(bytes(data))
    except cbor2.CBORDecodeError as e:
        raise ValueError(f"malformed CBOR: {e}") from e
