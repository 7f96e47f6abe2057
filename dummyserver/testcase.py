from __future__ import annotations

import contextlib
import socket
import threading
import time
import typing

from dummyserver.app import hypercorn_app
from dummyserver.hypercornserver import run_hypercorn_in_thread
from dummyserver.socketserver import SocketServerThread


def consume_socket(sock: socket.socket, chunks: int = 65536) -> bytearray:
    consumed = bytearray()
    while True:
        b = sock.recv(chunks)
        assert isinstance(b, bytes)
        consumed += b
        if not b or b.endswith(b"\r\n\r\n"):
            break
    return consumed


class SocketDummyServerTestCase:
    """
    A simple socket-based server is created for this class that is good for
    exactly one request.
    """

    scheme = "http"
    host = "127.0.0.1"

    server_thread: typing.ClassVar[SocketServerThread]
    port: typing.ClassVar[int]

    @classmethod
    def _start_server(
        cls, socket_handler: typing.Callable[[socket.socket], None]
    ) -> None:
        ready_event = threading.Event()
        cls.server_thread = SocketServerThread(
            socket_handler=socket_handler, ready_event=ready_event, host=cls.host
        )
        cls.server_thread.start()
        ready_event.wait(5)
        if not ready_event.is_set():
            raise Exception("most likely failed to start server")
        cls.port = cls.server_thread.port

    @classmethod
    def start_response_handler(cls, response: bytes, num: int = 1) -> threading.Event:
        ready_event = threading.Event()

        def socket_handler(listener: socket.socket) -> None:
            for _ in range(num):
                ready_event.set()

                sock = listener.accept()[0]
                consume_socket(sock)
                sock.send(response)
                sock.close()

        cls._start_server(socket_handler)
        return ready_event

    @classmethod
    def start_trickling_handler(
        cls, head: bytes, pieces: typing.Sequence[bytes], delay: float
    ) -> None:
        """Send ``head`` at once, then each of ``pieces`` ``delay`` seconds apart."""

        def socket_handler(listener: socket.socket) -> None:
            sock = listener.accept()[0]
            consume_socket(sock)
            try:
                sock.sendall(head)
                for piece in pieces:
                    time.sleep(delay)
                    sock.sendall(piece)
            except OSError:
                # The client hung up.
                pass
            finally:
                sock.close()

        cls._start_server(socket_handler)

    @classmethod
    def teardown_class(cls) -> None:
        if hasattr(cls, "server_thread"):
            cls.server_thread.join(0.1)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


class HypercornDummyServerTestCase:
    host = "127.0.0.1"
    port: typing.ClassVar[int]
    base_url: typing.ClassVar[str]

    _stack: typing.ClassVar[contextlib.ExitStack]

    @classmethod
    def setup_class(cls) -> None:
        with contextlib.ExitStack() as stack:
            cls.port = stack.enter_context(
                run_hypercorn_in_thread(cls.host, hypercorn_app)
            )
            cls._stack = stack.pop_all()
        cls.base_url = f"http://{cls.host}:{cls.port}"

    @classmethod
    def teardown_class(cls) -> None:
        cls._stack.close()
