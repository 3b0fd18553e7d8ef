"""Exceptions raised across the call boundary.

Every failure a caller can observe through a call's future is an
:class:`RPCError` subclass. Transport-level failures live in
:mod:`rabbitrpc.transport.base` so the protocol remains transport-agnostic.
"""

from __future__ import annotations

from typing import Optional


class RPCError(Exception):
    """Base class for all rabbitrpc errors."""


class NoSenderBindingError(RPCError, LookupError):
    """A call was issued for a queue this endpoint is not a sender on."""

    def __init__(self, queue: str):
        self.queue = queue
        super().__init__(f"Sender key is not defined for queue: '{queue}'")


class DuplicateIdError(RPCError, KeyError):
    """A correlation id was registered twice."""

    def __str__(self) -> str:
        # KeyError repr()s its argument; keep the message readable.
        return Exception.__str__(self)


class CallTimeout(RPCError, TimeoutError):
    """No reply arrived before the call's timeout expired."""

    def __init__(self, queue: str, event: Optional[str] = None, timeout: Optional[float] = None):
        self.queue = queue
        self.event = event
        self.timeout = timeout

        message = f"Call timeout for queue: '{queue}'"
        if event is not None:
            message += f", event: '{event}'"
        if timeout is not None:
            message += f" after {timeout:g} sec"

        super().__init__(message)


class RemoteError(RPCError):
    """The remote handler failed. ``str(error)`` is exactly the text the
    remote side reported; no structured error information crosses the wire.
    """

    def __init__(self, text: str, event: Optional[str] = None):
        self.text = text
        self.event = event
        super().__init__(text)


class ProtocolDecodeError(RPCError, ValueError):
    """An envelope, or a result converted at the call site, did not decode."""


class ConnectionClosed(RPCError):
    """The endpoint was closed while the call was still pending."""

    def __init__(self, reason: str = "connection closed"):
        self.reason = reason
        super().__init__(reason)
