from __future__ import annotations

import contextvars
import logging
import socket
import threading
import time
import typing
from dataclasses import dataclass
from types import TracebackType

from urllib3 import HTTPHeaderDict, PoolManager
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import HTTPError, MaxRetryError
from urllib3.response import BaseHTTPResponse
from urllib3.util.retry import Retry
from urllib3.util.timeout import Timeout

from .codec import json_request_callback
from .exceptions import BodyReadError, DeadlineExceededError, TransportError
from .request import _TYPE_BODY, ExchangeRequest, build_request
from .response import ResponseEntity

if typing.TYPE_CHECKING:
    from typing_extensions import Self

__all__ = [
    "Client",
    "ClientConfig",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_REQUEST_TIMEOUT",
    "RequestCallback",
]

log = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_CONNECT_TIMEOUT = 5.0

#: Same ceiling most HTTP clients use before giving up on a redirect chain.
MAX_REDIRECTS = 10

_READ_CHUNK_SIZE = 64 * 1024

RequestCallback = typing.Callable[[ExchangeRequest], None]

# Sentinel telling the verb methods to use json_request_callback.
_DEFAULT_CALLBACK: typing.Any = object()


@dataclass(frozen=True)
class ClientConfig:
    """
    Timeouts applied by a :class:`Client`, in seconds.

    :param request_timeout:
        Upper bound on a whole exchange, from building the request to the
        last body byte.

    :param connect_timeout:
        Upper bound on establishing the connection, TLS handshake included.
    """

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    def __post_init__(self) -> None:
        for name in ("request_timeout", "connect_timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or value <= 0:
                raise ValueError(f"{name} must be a positive number, got {value!r}")


class _Deadline:
    """
    The deadline of a single exchange.

    Starts counting when entered and is discarded on exit, so one instance
    never outlives the call it was made for. While it runs, a timer shuts
    down the socket of every connection the exchange uses once the deadline
    passes. A read blocked on a server that trickles bytes then returns
    right away instead of waiting out its own socket timeout.
    """

    def __init__(self, timeout: float, connect_timeout: float) -> None:
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.expires_at: float | None = None
        self.expired = False

        self._lock = threading.Lock()
        self._connections: set[HTTPConnection] = set()
        self._timer: threading.Timer | None = None
        self._token: contextvars.Token[_Deadline | None] | None = None

    def __enter__(self) -> _Deadline:
        self.expires_at = time.monotonic() + self.timeout
        self.expired = False
        self._timer = threading.Timer(self.timeout, self._expire)
        self._timer.daemon = True
        self._timer.start()
        self._token = _current_deadline.set(self)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _current_deadline.reset(self._token)
            self._token = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        with self._lock:
            self._connections.clear()
        self.expires_at = None

    def remaining(self) -> float:
        if self.expires_at is None:
            raise RuntimeError("Deadline used outside of the exchange it belongs to")
        return max(0.0, self.expires_at - time.monotonic())

    def check(self) -> None:
        if self.expired or self.remaining() <= 0:
            raise DeadlineExceededError(self.timeout)

    def transport_timeout(self) -> Timeout:
        """The urllib3 timeout bounded by what's left of this deadline."""
        remaining = self.remaining()
        if remaining <= 0:
            raise DeadlineExceededError(self.timeout)
        return Timeout(connect=min(self.connect_timeout, remaining), total=remaining)

    def watch(self, conn: HTTPConnection) -> None:
        """Abort ``conn`` if it is still in use when the deadline passes."""
        with self._lock:
            if self.expired:
                raise DeadlineExceededError(self.timeout)
            self._connections.add(conn)

    def cause(self, err: Exception) -> Exception:
        """What made the exchange fail with ``err``."""
        if self.expired and not isinstance(err, DeadlineExceededError):
            return DeadlineExceededError(self.timeout)
        return _unwrap_reason(err)

    def _expire(self) -> None:
        with self._lock:
            self.expired = True
            connections = list(self._connections)
        for conn in connections:
            log.debug("Deadline of %ss passed, aborting %s", self.timeout, conn.host)
            _abort(conn)


_current_deadline: contextvars.ContextVar[_Deadline | None] = contextvars.ContextVar(
    "restexchange_deadline", default=None
)


def _abort(conn: HTTPConnection) -> None:
    sock = conn.sock
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Closed by the reading thread in the meantime.
        pass


def _watch_current(conn: HTTPConnection) -> None:
    deadline = _current_deadline.get()
    if deadline is not None:
        deadline.watch(conn)


class _WatchedHTTPConnection(HTTPConnection):
    """An :class:`HTTPConnection` the running exchange's deadline can abort."""

    def connect(self) -> None:
        super().connect()
        _watch_current(self)

    def request(self, *args: typing.Any, **kwargs: typing.Any) -> None:
        _watch_current(self)
        super().request(*args, **kwargs)


class _WatchedHTTPSConnection(_WatchedHTTPConnection, HTTPSConnection):
    pass


class _WatchedHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = _WatchedHTTPConnection


class _WatchedHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = _WatchedHTTPSConnection


def _unwrap_reason(err: Exception) -> Exception:
    if isinstance(err, MaxRetryError) and err.reason is not None:
        return err.reason
    return err


class Client:
    """
    Issues HTTP exchanges and hands back fully buffered
    :class:`ResponseEntity` values.

    A client holds a :class:`urllib3.PoolManager` and no per-request state,
    so one instance can be shared between threads.

    :param config:
        Timeouts to apply; see :class:`ClientConfig` for the defaults.

    Example::

        >>> client = restexchange.Client()
        >>> entity = client.get("http://example.com/")
        >>> entity.status
        200
    """

    def __init__(self, config: ClientConfig | None = None) -> None:
        self._config = config or ClientConfig()
        self._pool = PoolManager()
        self._pool.pool_classes_by_scheme = {
            "http": _WatchedHTTPConnectionPool,
            "https": _WatchedHTTPSConnectionPool,
        }
        # Redirects are followed, failures are never retried.
        self._retries = Retry(
            total=None,
            connect=0,
            read=0,
            status=0,
            other=0,
            redirect=MAX_REDIRECTS,
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(request_timeout={self.request_timeout}, "
            f"connect_timeout={self.connect_timeout})"
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> typing.Literal[False]:
        self.close()
        # Return False to re-raise any potential exceptions
        return False

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def request_timeout(self) -> float:
        return self._config.request_timeout

    @property
    def connect_timeout(self) -> float:
        return self._config.connect_timeout

    def close(self) -> None:
        """Close every pooled connection. The client stays usable."""
        self._pool.clear()

    def exchange(
        self,
        url: str,
        method: str,
        body: _TYPE_BODY | None = None,
        request_callback: RequestCallback | None = None,
    ) -> ResponseEntity:
        """
        Perform one complete request/response cycle.

        :param url:
            Absolute ``http`` or ``https`` URL.

        :param method:
            HTTP method, sent as given.

        :param body:
            Optional request body: bytes, text (sent as UTF-8) or a readable
            object, which is read to the end before anything is sent.

        :param request_callback:
            Called once with the :class:`ExchangeRequest` right before it is
            sent. Use it to add headers, credentials and the like.

        :raises RequestConstructionError:
            The request couldn't be built. Nothing was sent.

        :raises TransportError:
            Sending the request or receiving the response head failed. The
            cause, including a timeout, is available as ``reason``.

        :raises BodyReadError:
            The response body couldn't be read to the end in time.
        """
        with _Deadline(self.request_timeout, self.connect_timeout) as deadline:
            request = build_request(method, url, body, deadline.expires_at)

            if request_callback is not None:
                request_callback(request)

            log.debug("Starting exchange: %s %s", request.method, request.url)
            try:
                response = self._dispatch(request, deadline)
            except (HTTPError, OSError) as e:
                reason = deadline.cause(e)
                raise TransportError(
                    f"{request.method} {request.url} failed: {reason}", reason
                ) from e

            try:
                data = self._drain(response, deadline)
            except (HTTPError, OSError) as e:
                # Unread data is left on the socket, it can't be reused.
                response.close()
                reason = deadline.cause(e)
                raise BodyReadError(
                    f"{request.method} {request.url}: "
                    f"failed to read response body: {reason}",
                    reason,
                ) from e
            finally:
                response.release_conn()

            log.debug(
                '"%s %s" %s (%d bytes)',
                request.method,
                request.url,
                response.status,
                len(data),
            )
            return ResponseEntity(
                status=response.status,
                headers=HTTPHeaderDict(response.headers),
                body=data,
            )

    def _dispatch(
        self, request: ExchangeRequest, deadline: _Deadline
    ) -> BaseHTTPResponse:
        response = self._pool.urlopen(
            request.method,
            request.url,
            body=request.body,
            headers=request.headers,
            timeout=deadline.transport_timeout(),
            retries=self._retries,
            preload_content=False,
        )
        if deadline.expired:
            # An aborted socket can end a response head early without an error.
            response.close()
            response.release_conn()
            raise DeadlineExceededError(deadline.timeout)
        return response

    @staticmethod
    def _drain(response: BaseHTTPResponse, deadline: _Deadline) -> bytes:
        chunks: list[bytes] = []
        for chunk in response.stream(_READ_CHUNK_SIZE):
            chunks.append(chunk)
            deadline.check()
        # An aborted socket reads as a clean end of a body without a length.
        if deadline.expired:
            raise DeadlineExceededError(deadline.timeout)
        return b"".join(chunks)

    def get(
        self, url: str, request_callback: RequestCallback | None = _DEFAULT_CALLBACK
    ) -> ResponseEntity:
        """Fetch ``url``."""
        return self.exchange(url, "GET", None, _callback(request_callback))

    def head(
        self, url: str, request_callback: RequestCallback | None = _DEFAULT_CALLBACK
    ) -> HTTPHeaderDict:
        """Return only the response headers of ``url``."""
        return self.exchange(url, "HEAD", None, _callback(request_callback)).headers

    def post(
        self,
        url: str,
        body: _TYPE_BODY | None,
        request_callback: RequestCallback | None = _DEFAULT_CALLBACK,
    ) -> ResponseEntity:
        return self.exchange(url, "POST", body, _callback(request_callback))

    def put(
        self,
        url: str,
        body: _TYPE_BODY | None,
        request_callback: RequestCallback | None = _DEFAULT_CALLBACK,
    ) -> ResponseEntity:
        return self.exchange(url, "PUT", body, _callback(request_callback))

    def patch(
        self,
        url: str,
        body: _TYPE_BODY | None,
        request_callback: RequestCallback | None = _DEFAULT_CALLBACK,
    ) -> ResponseEntity:
        return self.exchange(url, "PATCH", body, _callback(request_callback))

    def delete(
        self, url: str, request_callback: RequestCallback | None = _DEFAULT_CALLBACK
    ) -> None:
        """
        Delete ``url``. Only a failed exchange raises; the response status,
        whatever it is, is not an error here.
        """
        self.exchange(url, "DELETE", None, _callback(request_callback))

    def options_for_allow(
        self, url: str, request_callback: RequestCallback | None = _DEFAULT_CALLBACK
    ) -> list[str]:
        """
        Send ``OPTIONS`` to ``url`` and return the methods listed in the
        ``Allow`` response header.

        The header is split on commas and nothing else, so
        ``"POST, GET"`` gives ``["POST", " GET"]``. A missing or empty header
        gives ``[]``.
        """
        entity = self.exchange(url, "OPTIONS", None, _callback(request_callback))
        # Only the first Allow header counts.
        allow = entity.headers.getlist("Allow")
        if allow and allow[0]:
            return allow[0].split(",")
        return []


def _callback(request_callback: RequestCallback | None) -> RequestCallback | None:
    if request_callback is _DEFAULT_CALLBACK:
        return json_request_callback
    return request_callback
