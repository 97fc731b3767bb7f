"""Conversion between native Python values and Soroban SCVal XDR."""

import logging
from typing import Any

from stellar_sdk import scval
from stellar_sdk import xdr as stellar_xdr

logger = logging.getLogger(__name__)

SCValType = stellar_xdr.SCValType

_SCALAR_DECODERS = {
    SCValType.SCV_BOOL: scval.from_bool,
    SCValType.SCV_U32: scval.from_uint32,
    SCValType.SCV_I32: scval.from_int32,
    SCValType.SCV_U64: scval.from_uint64,
    SCValType.SCV_I64: scval.from_int64,
    SCValType.SCV_TIMEPOINT: scval.from_timepoint,
    SCValType.SCV_DURATION: scval.from_duration,
    SCValType.SCV_U128: scval.from_uint128,
    SCValType.SCV_I128: scval.from_int128,
    SCValType.SCV_U256: scval.from_uint256,
    SCValType.SCV_I256: scval.from_int256,
    SCValType.SCV_BYTES: scval.from_bytes,
}


def to_bytes(value: bytes) -> stellar_xdr.SCVal:
    return scval.to_bytes(value)


def to_address(address: str) -> stellar_xdr.SCVal:
    return scval.to_address(address)


def to_int128(value: int) -> stellar_xdr.SCVal:
    return scval.to_int128(value)


def decode(sc_val: stellar_xdr.SCVal) -> Any:
    """Decode an SCVal into native Python values.

    Integers of any width become int, bytes stay bytes, strings and symbols
    become str, addresses become their strkey, vectors become lists and maps
    become dicts. Unsupported types are returned unchanged.
    """
    value_type = sc_val.type

    if value_type == SCValType.SCV_VOID:
        return None

    decoder = _SCALAR_DECODERS.get(value_type)
    if decoder is not None:
        return decoder(sc_val)

    if value_type == SCValType.SCV_SYMBOL:
        return _text(scval.from_symbol(sc_val))

    if value_type == SCValType.SCV_STRING:
        return _text(scval.from_string(sc_val))

    if value_type == SCValType.SCV_ADDRESS:
        return scval.from_address(sc_val).address

    if value_type == SCValType.SCV_VEC:
        items = sc_val.vec.sc_vec if sc_val.vec is not None else []
        return [decode(item) for item in items]

    if value_type == SCValType.SCV_MAP:
        entries = sc_val.map.sc_map if sc_val.map is not None else []
        return {_hashable(decode(entry.key)): decode(entry.val) for entry in entries}

    return sc_val


def decode_xdr(encoded: str) -> Any:
    """Decode a base64 SCVal."""
    return decode(stellar_xdr.SCVal.from_xdr(encoded))


def _text(value: Any) -> Any:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return value
    return value


def _hashable(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_hashable(item) for item in value)
    return value
