from __future__ import annotations

import io
import json
import typing
from collections.abc import MutableMapping

from .exceptions import DecodeError, EncodeError

if typing.TYPE_CHECKING:
    from .request import ExchangeRequest

__all__ = ["decode_json", "encode_json", "json_request_callback"]

JSON_CONTENT_TYPE = "application/json"


def encode_json(value: typing.Any, *, strict: bool = False) -> io.BytesIO:
    """
    Serialize ``value`` as JSON into a readable byte stream, newline
    terminated, ready to be passed as an exchange body.

    A value that can't be serialized produces an empty stream unless
    ``strict`` is set, in which case :class:`EncodeError` is raised.
    """
    try:
        encoded = json.dumps(value, separators=(",", ":")) + "\n"
    except (TypeError, ValueError) as e:
        if strict:
            raise EncodeError(f"Failed to encode {type(value).__name__!r}") from e
        return io.BytesIO()
    return io.BytesIO(encoded.encode("utf-8"))


def decode_json(data: bytes | str, into: typing.Any = None) -> typing.Any:
    """
    Deserialize a JSON document.

    :param data:
        The document, as bytes (UTF-8, UTF-16 or UTF-32) or text.

    :param into:
        Where the decoded value should go. ``None`` returns the value as is.
        A mutable mapping is updated in place with the decoded object and
        returned. A class is called with the decoded object as keyword
        arguments and the instance is returned.

    :raises DecodeError:
        The document is not valid JSON, or doesn't fit ``into``.
    """
    try:
        value = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Invalid JSON document: {e}") from e

    if into is None:
        return value

    if not isinstance(value, dict):
        raise DecodeError(
            f"Expected a JSON object to decode into {into!r}, "
            f"got {type(value).__name__}"
        )

    if isinstance(into, MutableMapping):
        into.update(value)
        return into

    if isinstance(into, type):
        try:
            return into(**value)
        except TypeError as e:
            raise DecodeError(f"Can't decode into {into.__name__}: {e}") from e

    raise DecodeError(f"Unsupported decode target {into!r}")


def json_request_callback(request: ExchangeRequest) -> None:
    """Mark a request as sending and accepting uncached JSON."""
    request.add_header("Accept", JSON_CONTENT_TYPE)
    request.add_header("Content-Type", JSON_CONTENT_TYPE)
    request.add_header("Cache-Control", "no-cache")
