"""
Wire codec for messages crossing the coordinator/worker boundary.

Messages are packed with msgpack. Dates are not native msgpack types, they travel as
extension types holding their ISO representation.
"""
from __future__ import annotations

import datetime
from typing import Any

import msgpack

from .exceptions import ValidationException

EXT_DATETIME = 1
EXT_DATE = 2


def _default(obj: Any) -> Any:
    if isinstance(obj, datetime.datetime):
        return msgpack.ExtType(EXT_DATETIME, obj.isoformat().encode('utf-8'))
    if isinstance(obj, datetime.date):
        return msgpack.ExtType(EXT_DATE, obj.isoformat().encode('utf-8'))
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f'Cannot serialize {type(obj).__name__} in a message')


def _ext_hook(code: int, data: bytes) -> Any:
    if code == EXT_DATETIME:
        return datetime.datetime.fromisoformat(data.decode('utf-8'))
    if code == EXT_DATE:
        return datetime.date.fromisoformat(data.decode('utf-8'))
    return msgpack.ExtType(code, data)


def pack(message: dict) -> bytes:
    try:
        return msgpack.packb(message, default=_default, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as e:
        raise ValidationException(message=f'Message {message.get("type")} is not serializable: {e}',
                                  cause=e) from e


def unpack(data: bytes) -> dict:
    return msgpack.unpackb(data, ext_hook=_ext_hook, raw=False, strict_map_key=False)
