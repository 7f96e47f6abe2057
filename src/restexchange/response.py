from __future__ import annotations

import typing
from dataclasses import dataclass, field

from urllib3 import HTTPHeaderDict

from .codec import decode_json

__all__ = ["ResponseEntity"]


@dataclass(frozen=True)
class ResponseEntity:
    """
    The normalized result of one exchange.

    The body is fully buffered by the time an entity exists, and ``headers``
    is never ``None``: a failed exchange produces an entity with status ``0``,
    an empty :class:`urllib3.HTTPHeaderDict` and an empty body.

    :param status:
        HTTP status code returned by the server.

    :param headers:
        Response headers. Names are case-insensitive and a name may carry
        several values, in the order received.

    :param body:
        The raw response body.
    """

    status: int = 0
    headers: HTTPHeaderDict = field(default_factory=HTTPHeaderDict)
    body: bytes = b""

    @property
    def text(self) -> str:
        """The body decoded as UTF-8, with undecodable bytes replaced."""
        return self.body.decode("utf-8", errors="replace")

    def json(self, into: typing.Any = None) -> typing.Any:
        """
        Decode the body as JSON. See :func:`restexchange.codec.decode_json`
        for the meaning of ``into``.
        """
        return decode_json(self.body, into)
