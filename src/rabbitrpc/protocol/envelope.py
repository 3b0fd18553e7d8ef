"""Wire envelope for requests and replies.

An envelope is a closed tagged union, discriminated by its ``type`` field:

    {"type": "data",  "event": "...", "data": <any JSON value>}
    {"type": "error", "event": "...", "error": "<text>"}

The correlation id and reply address travel out-of-band as transport
metadata, never in the envelope itself.
"""

from __future__ import annotations

from typing import Any, Union

import msgspec
import msgspec.inspect

from .. import json
from ..errors import ProtocolDecodeError


DATA = "data"
ERROR = "error"

# Substituted for a handler result of None, so callers always receive a
# deterministic acknowledgment shape.
SUCCESS = {"success": True}


class Data(msgspec.Struct, tag_field="type", tag=DATA,
           frozen=True, forbid_unknown_fields=True):
    """A successful request or reply carrying an arbitrary payload."""

    event: str
    data: Any = None


class Error(msgspec.Struct, tag_field="type", tag=ERROR,
            frozen=True, forbid_unknown_fields=True):
    """A failed reply; the payload is the remote failure's message text."""

    event: str
    error: str


Envelope = Union[Data, Error]

_decoder = msgspec.json.Decoder(Envelope)


def data(event: str, value: Any = None) -> Data:
    return Data(event=event, data=value)


def error(event: str, exc: Union[BaseException, str]) -> Error:
    return Error(event=event, error=str(exc))


def encode(envelope: Envelope) -> bytes:
    """Serialize an envelope to UTF-8 JSON bytes.

    Raises TypeError or :class:`msgspec.EncodeError` if the payload
    contains values JSON cannot represent.
    """

    return json.dumps(envelope)


def decode(body: bytes) -> Envelope:
    """Deserialize bytes into a :class:`Data` or :class:`Error` envelope.

    Anything that is not valid JSON, or is JSON but not a well-formed
    envelope (unknown ``type``, missing ``event``, an error without text),
    raises :class:`ProtocolDecodeError`.
    """

    try:
        return _decoder.decode(body)
    except json.DecodeError as exc:
        # ValidationError is a subclass of DecodeError.
        raise ProtocolDecodeError(f"malformed envelope: {exc}") from exc


def convert(value: Any, type: Any) -> Any:
    """Convert an opaque payload into the shape the caller expects.

    *type* is anything msgspec understands: builtins, typing constructs,
    dataclasses, :class:`msgspec.Struct` subclasses.
    """

    try:
        return msgspec.convert(value, type)
    except msgspec.ValidationError as exc:
        raise ProtocolDecodeError(f"unexpected payload shape: {exc}") from exc


def check_type(type: Any) -> None:
    """Raise TypeError unless msgspec can convert payloads to *type*."""

    try:
        msgspec.inspect.type_info(type)
    except TypeError as exc:
        raise TypeError(f"cannot convert payloads to {type!r}: {exc}") from exc
