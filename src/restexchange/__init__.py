"""
A small HTTP exchange client: one call per request/response cycle, a fixed
per-client deadline, a request hook, and fully buffered responses.
"""

from __future__ import annotations

# Set default logging handler to avoid "No handler found" warnings.
import logging
import typing
from logging import NullHandler

from urllib3 import HTTPHeaderDict

from . import exceptions
from ._version import __version__
from .client import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    Client,
    ClientConfig,
    RequestCallback,
)
from .codec import decode_json, encode_json, json_request_callback
from .exceptions import (
    BodyReadError,
    DecodeError,
    EncodeError,
    ExchangeError,
    RequestConstructionError,
    TransportError,
)
from .request import _TYPE_BODY, ExchangeRequest
from .response import ResponseEntity

__license__ = "MIT"
__version__ = __version__

__all__ = (
    "BodyReadError",
    "Client",
    "ClientConfig",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_REQUEST_TIMEOUT",
    "DecodeError",
    "EncodeError",
    "ExchangeError",
    "ExchangeRequest",
    "RequestCallback",
    "RequestConstructionError",
    "ResponseEntity",
    "TransportError",
    "add_stderr_logger",
    "decode_json",
    "delete",
    "encode_json",
    "exceptions",
    "exchange",
    "get",
    "head",
    "json_request_callback",
    "options_for_allow",
    "patch",
    "post",
    "put",
)

logging.getLogger(__name__).addHandler(NullHandler())


def add_stderr_logger(level: int = logging.DEBUG) -> logging.StreamHandler[typing.TextIO]:
    """
    Helper for quickly adding a StreamHandler to the logger. Useful for
    debugging.

    Returns the handler after adding it.
    """
    # This method needs to be in this __init__.py to get the __name__ correct
    # even if restexchange is vendored within another package.
    logger = logging.getLogger(__name__)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.debug("Added a stderr logging handler to logger: %s", __name__)
    return handler


# ... Clean up.
del NullHandler


_DEFAULT_CLIENT = Client()


def exchange(
    url: str,
    method: str,
    body: _TYPE_BODY | None = None,
    request_callback: RequestCallback | None = None,
) -> ResponseEntity:
    """
    A convenience, top-level exchange. It uses a module-global :class:`Client`
    with the default timeouts; create your own :class:`Client` to change them.
    """
    return _DEFAULT_CLIENT.exchange(url, method, body, request_callback)


def get(url: str) -> ResponseEntity:
    return _DEFAULT_CLIENT.get(url)


def head(url: str) -> HTTPHeaderDict:
    return _DEFAULT_CLIENT.head(url)


def post(url: str, body: _TYPE_BODY | None) -> ResponseEntity:
    return _DEFAULT_CLIENT.post(url, body)


def put(url: str, body: _TYPE_BODY | None) -> ResponseEntity:
    return _DEFAULT_CLIENT.put(url, body)


def patch(url: str, body: _TYPE_BODY | None) -> ResponseEntity:
    return _DEFAULT_CLIENT.patch(url, body)


def delete(url: str) -> None:
    _DEFAULT_CLIENT.delete(url)


def options_for_allow(url: str) -> list[str]:
    return _DEFAULT_CLIENT.options_for_allow(url)
