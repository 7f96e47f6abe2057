from __future__ import annotations

import logging
import typing

import pytest

import restexchange
from restexchange import Client, ClientConfig
from test import SHORT_TIMEOUT


@pytest.fixture()
def client() -> typing.Generator[Client, None, None]:
    with Client() as http:
        yield http


@pytest.fixture()
def short_client() -> typing.Generator[Client, None, None]:
    with Client(ClientConfig(request_timeout=SHORT_TIMEOUT)) as http:
        yield http


@pytest.fixture()
def stderr_logger() -> typing.Generator[logging.Handler, None, None]:
    handler = restexchange.add_stderr_logger()
    yield handler
    logger = logging.getLogger("restexchange")
    logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
