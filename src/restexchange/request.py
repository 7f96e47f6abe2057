from __future__ import annotations

import json
import re
import typing
from dataclasses import dataclass, field

from urllib3 import HTTPHeaderDict
from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url

from .exceptions import RequestConstructionError

__all__ = ["ExchangeRequest", "build_request"]

# RFC 9110 token characters.
_METHOD_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")

_SUPPORTED_SCHEMES = ("http", "https")

_TYPE_BODY = typing.Union[bytes, bytearray, str, typing.IO[typing.Any]]


@dataclass
class ExchangeRequest:
    """
    An outbound request, handed to the request callback before dispatch.

    The callback may change anything here; what it leaves behind is what
    gets sent.
    """

    method: str
    url: str
    headers: HTTPHeaderDict = field(default_factory=HTTPHeaderDict)
    body: bytes | None = None
    #: :func:`time.monotonic` instant after which the exchange is abandoned.
    deadline: float | None = field(default=None, compare=False)

    def add_header(self, name: str, value: str) -> None:
        """Append ``value`` to whatever ``name`` already holds."""
        self.headers.add(name, value)

    def set_header(self, name: str, value: str) -> None:
        """Replace every value of ``name`` with ``value``."""
        self.headers[name] = value

    def set_body(self, body: bytes | None) -> None:
        self.body = body

    def set_json(self, value: typing.Any) -> None:
        self.set_header("Content-Type", "application/json")
        self.set_body(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def _read_body(body: _TYPE_BODY | None) -> bytes | None:
    if body is None or isinstance(body, bytes):
        return body
    if isinstance(body, bytearray):
        return bytes(body)
    if isinstance(body, str):
        return body.encode("utf-8")
    if hasattr(body, "read"):
        try:
            data = body.read()
        except OSError as e:
            raise RequestConstructionError(f"Failed to read request body: {e}") from e
        if isinstance(data, str):
            return data.encode("utf-8")
        if not isinstance(data, (bytes, bytearray, memoryview)):
            # Non-blocking streams return None when nothing is ready yet.
            raise RequestConstructionError(
                f"Request body read() returned {type(data).__name__!r}, "
                "expected bytes or str"
            )
        return bytes(data)
    raise RequestConstructionError(
        f"Unsupported request body type {type(body).__name__!r}"
    )


def build_request(
    method: str,
    url: str,
    body: _TYPE_BODY | None = None,
    deadline: float | None = None,
) -> ExchangeRequest:
    """
    Validate ``method``, ``url`` and ``body`` and build the request from them.

    Readable bodies are consumed completely here, so the request can be
    dispatched with a known ``Content-Length``.

    :raises RequestConstructionError:
        The method isn't an HTTP token, the URL can't be parsed or isn't an
        absolute ``http``/``https`` URL, or the body can't be read.
    """
    if not method or not _METHOD_RE.fullmatch(method):
        raise RequestConstructionError(f"Invalid method {method!r}")

    try:
        parsed = parse_url(url)
    except LocationParseError as e:
        raise RequestConstructionError(f"Invalid URL {url!r}: {e}") from e

    if parsed.scheme not in _SUPPORTED_SCHEMES:
        raise RequestConstructionError(
            f"Unsupported protocol scheme {parsed.scheme!r} in URL {url!r}"
        )
    if not parsed.host:
        raise RequestConstructionError(f"No host supplied in URL {url!r}")

    return ExchangeRequest(
        method=method,
        url=url,
        body=_read_body(body),
        deadline=deadline,
    )
