"""
Serves an ASGI app with Hypercorn from a background thread, for tests that
need a real HTTP server.
"""

from __future__ import annotations

import concurrent.futures
import contextlib
import errno
import functools
import socket
import sys
import threading
import traceback
import typing

import hypercorn
import hypercorn.config
import hypercorn.trio
import hypercorn.typing
import trio
from urllib3.util.url import parse_url

BIND_ATTEMPTS = 10


class Config(hypercorn.Config):
    """Binds plain sockets on a random port of a single host."""

    def create_sockets(self) -> hypercorn.config.Sockets:
        assert len(self.bind) == 1
        return hypercorn.config.Sockets(
            secure_sockets=[],
            insecure_sockets=self._bind_with_retries(self.bind[0]),
            quic_sockets=[],
        )

    def _bind_with_retries(self, bind: str) -> list[socket.socket]:
        # "localhost" resolves to both IPv4 and IPv6; the IPv6 socket reuses
        # the random IPv4 port, which may already be taken.
        for _ in range(BIND_ATTEMPTS):
            try:
                return self._bind_all(bind)
            except OSError as e:
                if e.errno != errno.EADDRINUSE:
                    raise
                print(f"{bind}: address in use, trying another port", file=sys.stderr)
        raise OSError(f"failed to bind {bind} after {BIND_ATTEMPTS} attempts")

    def _bind_all(self, bind: str) -> list[socket.socket]:
        host = bind.replace("[", "").replace("]", "").rsplit(":", 1)[0]
        family = socket.AF_INET6 if ":" in host else socket.AF_UNSPEC
        port = 0
        sockets: list[socket.socket] = []

        for af, _, proto, _, _ in socket.getaddrinfo(
            host, port, family, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
        ):
            sock = socket.socket(af, socket.SOCK_STREAM, proto)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setblocking(False)
            try:
                sock.bind((host, port))
            except OSError:
                sock.close()
                for bound in sockets:
                    bound.close()
                raise
            port = sock.getsockname()[1]
            sock.set_inheritable(True)
            sockets.append(sock)

        return sockets


async def _wait_for(event: threading.Event) -> None:
    while not event.is_set():
        await trio.sleep(0.1)


async def _serve(
    config: Config,
    app: hypercorn.typing.ASGIFramework,
    ready_event: threading.Event,
    shutdown_event: threading.Event,
) -> None:
    async with trio.open_nursery() as nursery:
        try:
            config.bind = await nursery.start(
                functools.partial(
                    hypercorn.trio.serve,
                    app,
                    config,
                    shutdown_trigger=functools.partial(_wait_for, shutdown_event),
                )
            )
        except Exception:
            print("Starting server failed", file=sys.stderr)
            traceback.print_exc()
            raise
        ready_event.set()


@contextlib.contextmanager
def run_hypercorn_in_thread(
    host: str, app: hypercorn.typing.ASGIFramework
) -> typing.Iterator[int]:
    """Serve ``app`` on a random port of ``host`` and yield that port."""
    config = Config()
    config.bind = [f"{host}:0"]
    # Slow test requests must not hold up teardown.
    config.graceful_timeout = 1

    ready_event = threading.Event()
    shutdown_event = threading.Event()

    with concurrent.futures.ThreadPoolExecutor(
        1, thread_name_prefix="hypercorn dummyserver"
    ) as executor:
        future = executor.submit(
            trio.run, _serve, config, app, ready_event, shutdown_event
        )
        if not ready_event.wait(5):
            raise Exception("most likely failed to start server")

        try:
            port = parse_url(config.bind[0]).port
            assert port is not None
            yield port
        finally:
            shutdown_event.set()
            future.result()


def main() -> int:
    from .app import hypercorn_app

    config = Config()
    config.bind = ["localhost:0"]
    trio.run(_serve, config, hypercorn_app, threading.Event(), threading.Event())
    return 0


if __name__ == "__main__":
    sys.exit(main())
