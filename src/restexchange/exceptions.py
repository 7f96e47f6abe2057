from __future__ import annotations

import typing

if typing.TYPE_CHECKING:
    from .response import ResponseEntity

# Base Exceptions

_TYPE_REDUCE_RESULT = typing.Tuple[typing.Callable[..., object], typing.Tuple[object, ...]]


class ExchangeError(Exception):
    """Base exception used by this module.

    Every exchange failure carries an empty :class:`ResponseEntity` so that
    callers always see a well-shaped result, headers included.
    """

    def __init__(self, message: str, entity: ResponseEntity | None = None) -> None:
        super().__init__(message)
        if entity is None:
            from .response import ResponseEntity

            entity = ResponseEntity()
        self.entity = entity

    def __reduce__(self) -> _TYPE_REDUCE_RESULT:
        # For pickling purposes.
        return self.__class__, (str(self), self.entity)


class RequestConstructionError(ExchangeError):
    """Raised when the method, URL or body can't form a request.

    Nothing was sent over the network.
    """


class TransportError(ExchangeError):
    """Raised when dispatching the request fails.

    Connection refused, DNS failure, TLS failure and timeout expiry all end
    up here; inspect :attr:`reason` to tell them apart.
    """

    def __init__(
        self,
        message: str,
        reason: Exception | None = None,
        entity: ResponseEntity | None = None,
    ) -> None:
        super().__init__(message, entity)
        self.reason = reason

    def __reduce__(self) -> _TYPE_REDUCE_RESULT:
        # For pickling purposes.
        return self.__class__, (str(self), self.reason, self.entity)


class BodyReadError(TransportError):
    """Raised when draining the response body fails after the status line.

    Whatever part of the body had been read is discarded.
    """


class DeadlineExceededError(TimeoutError):
    """Raised when the per-exchange deadline passes while reading a body."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Exchange exceeded its deadline of {timeout} seconds")
        self.timeout = timeout

    def __reduce__(self) -> _TYPE_REDUCE_RESULT:
        # For pickling purposes.
        return self.__class__, (self.timeout,)


# Codec Exceptions


class CodecError(ValueError):
    """Base exception for the JSON helpers."""


class EncodeError(CodecError):
    "Raised when a value can't be serialized to JSON."


class DecodeError(CodecError):
    "Raised when a byte sequence can't be deserialized into the target."
