"""
Raw socket server for responses no well-behaved HTTP server would send.
"""

from __future__ import annotations

import socket
import sys
import threading
import typing


class SocketServerThread(threading.Thread):
    """
    :param socket_handler: Callable which receives the listening socket and
        serves as many requests as it likes.
    :param ready_event: Event which gets set when the socket handler is
        ready to receive requests.
    """

    def __init__(
        self,
        socket_handler: typing.Callable[[socket.socket], None],
        host: str = "127.0.0.1",
        ready_event: threading.Event | None = None,
    ) -> None:
        super().__init__()
        self.daemon = True

        self.socket_handler = socket_handler
        self.host = host
        self.ready_event = ready_event

    def _start_server(self) -> None:
        sock = socket.socket(socket.AF_INET)
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, 0))
        self.port = sock.getsockname()[1]

        # Once listen() returns, the server socket is ready
        sock.listen(1)

        if self.ready_event:
            self.ready_event.set()

        self.socket_handler(sock)
        sock.close()

    def run(self) -> None:
        self._start_server()


def get_closed_port(host: str = "127.0.0.1") -> int:
    """A port nothing listens on, for connection refused errors."""
    sock = socket.socket(socket.AF_INET)
    sock.bind((host, 0))
    port: int = sock.getsockname()[1]
    sock.close()
    return port
