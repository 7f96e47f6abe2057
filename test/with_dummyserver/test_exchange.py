from __future__ import annotations

import concurrent.futures
import io
import json
import time
import uuid

import pytest
from urllib3 import HTTPHeaderDict
from urllib3.exceptions import ReadTimeoutError, ResponseError

import restexchange
from dummyserver.app import (
    ACCESS_CONTROL_ALLOW_HEADERS_VALUE,
    ACCESS_CONTROL_ALLOW_METHODS_VALUE,
    REQUEST_IDS,
)
from dummyserver.testcase import HypercornDummyServerTestCase
from restexchange import Client, decode_json, encode_json
from restexchange.exceptions import (
    BodyReadError,
    DeadlineExceededError,
    TransportError,
)
from restexchange.request import ExchangeRequest
from test import SHORT_TIMEOUT, TIMEOUT_MARGIN

JSON_BODY = b'{"someProperty":"someValue"}'


def assert_cors_headers(headers: HTTPHeaderDict) -> None:
    assert len(headers) > 0
    assert headers["Access-Control-Allow-Methods"] == ACCESS_CONTROL_ALLOW_METHODS_VALUE
    assert headers["Access-Control-Allow-Headers"] == ACCESS_CONTROL_ALLOW_HEADERS_VALUE


class TestVerbs(HypercornDummyServerTestCase):
    def test_head(self, client: Client) -> None:
        headers = client.head(self.base_url)
        assert isinstance(headers, HTTPHeaderDict)
        assert_cors_headers(headers)

    def test_head_has_no_body(self, client: Client) -> None:
        entity = client.exchange(self.base_url, "HEAD")
        assert entity.status == 200
        assert entity.body == b""

    def test_get(self, client: Client) -> None:
        entity = client.get(self.base_url)
        assert entity.status == 200
        assert_cors_headers(entity.headers)

        body: dict[str, str] = {}
        decode_json(entity.body, body)
        assert body["someProperty"] == "someValue"

    def test_post(self, client: Client) -> None:
        entity = client.post(self.base_url, io.StringIO(JSON_BODY.decode()))
        assert entity.status == 200
        assert entity.body == JSON_BODY
        assert_cors_headers(entity.headers)

    def test_put(self, client: Client) -> None:
        payload = encode_json({"someProperty": "struct property value"})
        entity = client.put(self.base_url, payload)
        assert entity.status == 200
        assert entity.json() == {"someProperty": "struct property value"}
        assert_cors_headers(entity.headers)

    def test_patch(self, client: Client) -> None:
        entity = client.patch(self.base_url, JSON_BODY.decode())
        assert entity.status == 200
        assert entity.body == JSON_BODY
        assert_cors_headers(entity.headers)

    def test_delete(self, client: Client) -> None:
        assert client.delete(self.base_url) is None

    @pytest.mark.parametrize("code", [204, 404, 500, 503])
    def test_delete_ignores_status(self, client: Client, code: int) -> None:
        assert client.delete(f"{self.base_url}/status/{code}") is None

    def test_options_for_allow(self, client: Client) -> None:
        allows = client.options_for_allow(self.base_url)
        # The header is split on commas only, spaces stay with the token.
        assert allows == ["POST", " GET", " OPTIONS", " PATCH", " PUT", " DELETE"]

    def test_options_for_allow_without_header(self, client: Client) -> None:
        assert client.options_for_allow(f"{self.base_url}/no_allow") == []

    def test_options_for_allow_with_empty_header(self, client: Client) -> None:
        assert client.options_for_allow(f"{self.base_url}/empty_allow") == []

    @pytest.mark.parametrize(
        "method", ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )
    def test_status_and_headers_are_forwarded(self, client: Client, method: str) -> None:
        entity = client.exchange(f"{self.base_url}/status/201", method, b"")
        assert entity.status == 201
        assert entity.headers["X-Status"] == "201"
        assert "Content-Type" in entity.headers

    @pytest.mark.parametrize(
        "method", ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )
    def test_method_is_sent_as_given(self, client: Client, method: str) -> None:
        entity = client.exchange(f"{self.base_url}/echo_method", method)
        assert entity.headers["X-Method"] == method
        assert entity.text == method


class TestRequestCallback(HypercornDummyServerTestCase):
    def test_get_without_callback(self, client: Client) -> None:
        entity = client.exchange(self.base_url, "GET")
        assert entity.status == 200
        assert entity.body == JSON_BODY

        entity = client.get(self.base_url, request_callback=None)
        assert entity.status == 200

    def test_callback_runs_once_before_dispatch(self, client: Client) -> None:
        request_id = uuid.uuid4().hex
        seen: list[ExchangeRequest] = []

        def add_request_id(request: ExchangeRequest) -> None:
            seen.append(request)
            request.add_header("X-Request-Id", request_id)

        entity = client.exchange(
            f"{self.base_url}/echo_headers", "GET", None, add_request_id
        )
        assert len(seen) == 1
        assert seen[0].method == "GET"
        assert seen[0].deadline is not None
        assert REQUEST_IDS[request_id] == 1
        assert entity.json()["x-request-id"] == [request_id]

    def test_callback_can_set_auth(self, client: Client) -> None:
        def bearer(request: ExchangeRequest) -> None:
            request.set_header("Authorization", "Bearer sekrit")

        headers = client.get(f"{self.base_url}/echo_headers", bearer).json()
        assert headers["authorization"] == ["Bearer sekrit"]
        # A custom callback replaces the JSON headers.
        assert "cache-control" not in headers

    def test_verbs_default_to_json_headers(self, client: Client) -> None:
        headers = client.get(f"{self.base_url}/echo_headers").json()
        assert headers["accept"] == ["application/json"]
        assert headers["content-type"] == ["application/json"]
        assert headers["cache-control"] == ["no-cache"]

    def test_callback_can_replace_body(self, client: Client) -> None:
        def replace_body(request: ExchangeRequest) -> None:
            request.set_json({"replaced": True})

        entity = client.post(self.base_url, b"original", replace_body)
        assert json.loads(entity.body) == {"replaced": True}


class TestTimeouts(HypercornDummyServerTestCase):
    def test_slow_server(self, short_client: Client) -> None:
        start = time.monotonic()
        with pytest.raises(TransportError) as e:
            short_client.get(f"{self.base_url}/sleep?seconds=3")
        elapsed = time.monotonic() - start

        # Whichever of the socket timeout and the deadline timer fires first.
        assert isinstance(e.value.reason, (ReadTimeoutError, DeadlineExceededError))
        assert elapsed < SHORT_TIMEOUT + TIMEOUT_MARGIN
        assert e.value.entity.status == 0
        assert e.value.entity.headers == HTTPHeaderDict()
        assert e.value.entity.body == b""

    def test_slow_server_non_idempotent(self, short_client: Client) -> None:
        with pytest.raises(TransportError) as e:
            short_client.post(f"{self.base_url}/sleep?seconds=3", b"{}")
        # Whichever of the socket timeout and the deadline timer fires first.
        assert isinstance(e.value.reason, (ReadTimeoutError, DeadlineExceededError))

    def test_slow_body(self, short_client: Client) -> None:
        start = time.monotonic()
        with pytest.raises(BodyReadError) as e:
            short_client.get(f"{self.base_url}/drip?chunks=20&delay=0.15")
        elapsed = time.monotonic() - start

        assert isinstance(e.value.reason, DeadlineExceededError)
        assert elapsed < SHORT_TIMEOUT + TIMEOUT_MARGIN
        assert e.value.entity.body == b""
        assert len(e.value.entity.headers) == 0

    def test_fast_enough_body(self, short_client: Client) -> None:
        entity = short_client.get(f"{self.base_url}/drip?chunks=3&delay=0.01")
        assert entity.body == b"drop" * 3

    def test_server_within_timeout(self, short_client: Client) -> None:
        entity = short_client.get(f"{self.base_url}/sleep?seconds=0.05")
        assert entity.status == 200
        assert entity.text == "slept"

    def test_deadline_is_per_call(self, short_client: Client) -> None:
        # Each call gets its own deadline, so calls adding up to more than the
        # timeout all succeed.
        for _ in range(3):
            entity = short_client.get(f"{self.base_url}/sleep?seconds=0.2")
            assert entity.status == 200


class TestRedirects(HypercornDummyServerTestCase):
    def test_redirect_is_followed(self, client: Client) -> None:
        entity = client.get(f"{self.base_url}/redirect?target=/")
        assert entity.status == 200
        assert entity.body == JSON_BODY

    def test_too_many_redirects(self, client: Client) -> None:
        with pytest.raises(TransportError) as e:
            client.get(f"{self.base_url}/redirect_loop")
        assert isinstance(e.value.reason, ResponseError)
        assert e.value.entity.status == 0


class TestConcurrency(HypercornDummyServerTestCase):
    def test_shared_client(self, client: Client) -> None:
        urls = [f"{self.base_url}/status/{200 + i % 3}" for i in range(16)]
        with concurrent.futures.ThreadPoolExecutor(8) as executor:
            entities = list(executor.map(client.get, urls))

        assert [e.status for e in entities] == [200 + i % 3 for i in range(16)]
        for entity in entities:
            assert entity.headers["X-Status"] == str(entity.status)


class TestModuleFunctions(HypercornDummyServerTestCase):
    def test_verbs(self) -> None:
        assert restexchange.get(self.base_url).body == JSON_BODY
        assert_cors_headers(restexchange.head(self.base_url))
        assert restexchange.post(self.base_url, b"post").body == b"post"
        assert restexchange.put(self.base_url, b"put").body == b"put"
        assert restexchange.patch(self.base_url, b"patch").body == b"patch"
        assert restexchange.delete(self.base_url) is None
        assert restexchange.options_for_allow(self.base_url)[0] == "POST"

    def test_exchange(self) -> None:
        entity = restexchange.exchange(f"{self.base_url}/status/202", "GET")
        assert entity.status == 202

    def test_logging(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("DEBUG", logger="restexchange"):
            restexchange.get(self.base_url)
        assert f'"GET {self.base_url}" 200 ({len(JSON_BODY)} bytes)' in caplog.text
