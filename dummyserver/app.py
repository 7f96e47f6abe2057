from __future__ import annotations

import collections
import json
from typing import AsyncIterator

import trio
from quart import make_response, request

# TODO switch to Response if https://github.com/pallets/quart/issues/288 is fixed
from quart.typing import ResponseTypes
from quart_trio import QuartTrio

hypercorn_app = QuartTrio(__name__)

ALLOW_VALUE = "POST, GET, OPTIONS, PATCH, PUT, DELETE"
ACCESS_CONTROL_ALLOW_METHODS_VALUE = "POST, GET, OPTIONS, PATCH, PUT, DELETE"
ACCESS_CONTROL_ALLOW_HEADERS_VALUE = (
    "Accept, Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, Authorization"
)
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# Requests seen per value of the X-Request-Id header.
REQUEST_IDS: collections.Counter[str] = collections.Counter()


def _cors_headers() -> dict[str, str]:
    headers = {
        "Allow": ALLOW_VALUE,
        "Access-Control-Allow-Methods": ACCESS_CONTROL_ALLOW_METHODS_VALUE,
        "Access-Control-Allow-Headers": ACCESS_CONTROL_ALLOW_HEADERS_VALUE,
    }
    origin = request.headers.get("Origin")
    if origin:
        headers["Access-Control-Allow-Origin"] = origin
    return headers


@hypercorn_app.route("/", methods=ALL_METHODS, provide_automatic_options=False)
async def index() -> ResponseTypes:
    "Answer like a small JSON resource, echoing written bodies back"
    if request.method == "GET":
        body = b'{"someProperty":"someValue"}'
    elif request.method in ("POST", "PUT", "PATCH"):
        body = await request.get_data()
    else:
        body = b""
    response = await make_response(body, 200)
    response.headers.update(_cors_headers())
    return response


@hypercorn_app.route("/status/<int:code>", methods=ALL_METHODS)
async def status(code: int) -> ResponseTypes:
    "Respond with the status code from the path"
    body = "" if code in (204, 304) else f"Status {code}"
    response = await make_response(body, code)
    response.headers["X-Status"] = str(code)
    return response


@hypercorn_app.route("/echo_headers", methods=ALL_METHODS)
async def echo_headers() -> ResponseTypes:
    "Return the request headers, lower-cased names mapped to lists of values"
    request_id = request.headers.get("X-Request-Id")
    if request_id:
        REQUEST_IDS[request_id] += 1
    headers: dict[str, list[str]] = {}
    for name, value in request.headers.items():
        headers.setdefault(name.lower(), []).append(value)
    return await make_response(json.dumps(headers), 200)


@hypercorn_app.route("/echo_method", methods=ALL_METHODS)
async def echo_method() -> ResponseTypes:
    response = await make_response(request.method, 200)
    response.headers["X-Method"] = request.method
    return response


@hypercorn_app.route("/no_allow", methods=["OPTIONS"], provide_automatic_options=False)
async def no_allow() -> ResponseTypes:
    return await make_response("", 204)


@hypercorn_app.route("/empty_allow", methods=["OPTIONS"], provide_automatic_options=False)
async def empty_allow() -> ResponseTypes:
    response = await make_response("", 200)
    response.headers["Allow"] = ""
    return response


@hypercorn_app.route("/sleep", methods=ALL_METHODS)
async def sleep() -> ResponseTypes:
    "Sleep for the number of seconds given in the query before answering"
    seconds = float(request.args.get("seconds", "0"))
    await trio.sleep(seconds)
    return await make_response("slept", 200)


@hypercorn_app.route("/drip")
async def drip() -> ResponseTypes:
    "Send the body in small chunks with a pause between each"
    chunks = int(request.args.get("chunks", "5"))
    delay = float(request.args.get("delay", "0.2"))

    async def generate() -> AsyncIterator[bytes]:
        for _ in range(chunks):
            yield b"drop"
            await trio.sleep(delay)

    return await make_response(generate(), 200)


@hypercorn_app.route("/redirect", methods=ALL_METHODS)
async def redirect() -> ResponseTypes:
    "Perform a redirect to ``target``"
    target = request.args.get("target", "/")
    status = request.args.get("status", "303 See Other")
    status_code = status.split(" ")[0]

    headers = [("Location", target)]
    return await make_response("", status_code, headers)


@hypercorn_app.route("/redirect_loop")
async def redirect_loop() -> ResponseTypes:
    headers = [("Location", "/redirect_loop")]
    return await make_response("", 302, headers)
