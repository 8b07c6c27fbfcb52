"""Tests for the aiohttp executor and error classification."""

from __future__ import annotations

import asyncio
import json
import socket
import ssl

import aiohttp
import pytest

from reqforge._internal.errors import RequestCancelledError
from reqforge.engine.executor import (
    AiohttpExecutor,
    RequestExecutor,
    classify_error,
    describe_error,
)
from reqforge.engine.protocol import RequestTemplate
from reqforge.metrics.models import ErrorCategory


class TestClassifyError:
    @pytest.mark.parametrize(
        ("exc", "category"),
        [
            (TimeoutError(), ErrorCategory.TIMEOUT),
            (asyncio.TimeoutError(), ErrorCategory.TIMEOUT),
            (aiohttp.ServerTimeoutError("read timeout"), ErrorCategory.TIMEOUT),
            (ConnectionRefusedError(111, "refused"), ErrorCategory.CONNECTION_REFUSED),
            (socket.gaierror(-2, "Name or service not known"), ErrorCategory.DNS_RESOLUTION),
            (ssl.SSLError(1, "handshake failure"), ErrorCategory.TLS_HANDSHAKE),
            (aiohttp.ClientPayloadError("truncated"), ErrorCategory.RESPONSE_PARSE),
            (
                aiohttp.ClientResponseError(request_info=None, history=()),  # type: ignore[arg-type]
                ErrorCategory.RESPONSE_PARSE,
            ),
            (asyncio.CancelledError(), ErrorCategory.CANCELLED),
            (RequestCancelledError("stop"), ErrorCategory.CANCELLED),
            (ConnectionResetError(104, "reset"), ErrorCategory.UNKNOWN),
            (ValueError("boom"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_mapping(self, exc: BaseException, category: ErrorCategory):
        assert classify_error(exc) is category

    def test_connector_error_uses_underlying_os_error(self):
        refused = aiohttp.ClientConnectorError(None, ConnectionRefusedError(111, "refused"))  # type: ignore[arg-type]
        dns = aiohttp.ClientConnectorError(None, socket.gaierror(-2, "unknown host"))  # type: ignore[arg-type]
        other = aiohttp.ClientConnectorError(None, OSError(113, "no route"))  # type: ignore[arg-type]

        assert classify_error(refused) is ErrorCategory.CONNECTION_REFUSED
        assert classify_error(dns) is ErrorCategory.DNS_RESOLUTION
        assert classify_error(other) is ErrorCategory.UNKNOWN


class TestDescribeError:
    def test_with_message(self):
        assert describe_error(ValueError("boom")) == "ValueError: boom"

    def test_without_message(self):
        assert describe_error(TimeoutError()) == "TimeoutError"


class TestAiohttpExecutor:
    def test_satisfies_protocol(self):
        assert isinstance(AiohttpExecutor(), RequestExecutor)

    async def test_send_outside_context_fails(self):
        template = RequestTemplate(method="GET", url="http://127.0.0.1/")
        with pytest.raises(RuntimeError, match="async context manager"):
            await AiohttpExecutor().send(template, 1.0)

    async def test_get(self, echo_server: str):
        template = RequestTemplate(method="GET", url=f"{echo_server}/health")
        async with AiohttpExecutor() as executor:
            response = await executor.send(template, 5.0)

        assert response.status_code == 200
        assert json.loads(response.body) == {"status": "ok"}
        assert response.elapsed_ms is not None
        assert response.elapsed_ms > 0

    async def test_headers_and_body_are_sent(self, echo_server: str):
        template = RequestTemplate(
            method="post",
            url=f"{echo_server}/echo/items",
            headers={"X-Trace": "abc"},
            body='{"name": "widget"}',
        )
        async with AiohttpExecutor() as executor:
            response = await executor.send(template, 5.0)

        echoed = json.loads(response.body)
        assert echoed["method"] == "POST"
        assert echoed["path"] == "/echo/items"
        assert echoed["headers"]["X-Trace"] == "abc"
        assert echoed["body"] == '{"name": "widget"}'

    async def test_body_size(self, echo_server: str):
        template = RequestTemplate(method="GET", url=f"{echo_server}/bytes?size=1234")
        async with AiohttpExecutor() as executor:
            response = await executor.send(template, 5.0)
        assert len(response.body) == 1234

    async def test_error_status_is_a_response(self, echo_server: str):
        template = RequestTemplate(method="GET", url=f"{echo_server}/error?status=503")
        async with AiohttpExecutor() as executor:
            response = await executor.send(template, 5.0)
        assert response.status_code == 503

    async def test_redirects(self, echo_server: str):
        follow = RequestTemplate(method="GET", url=f"{echo_server}/redirect")
        no_follow = RequestTemplate(
            method="GET", url=f"{echo_server}/redirect", follow_redirects=False
        )
        async with AiohttpExecutor() as executor:
            followed = await executor.send(follow, 5.0)
            not_followed = await executor.send(no_follow, 5.0)

        assert followed.status_code == 200
        assert not_followed.status_code == 302

    @pytest.mark.timeout(10)
    async def test_timeout(self, echo_server: str):
        template = RequestTemplate(method="GET", url=f"{echo_server}/delay?delay=2")
        async with AiohttpExecutor() as executor:
            with pytest.raises(Exception) as excinfo:  # noqa: PT011
                await executor.send(template, 0.2)
        assert classify_error(excinfo.value) is ErrorCategory.TIMEOUT

    async def test_connection_refused(self, closed_port_url: str):
        template = RequestTemplate(method="GET", url=closed_port_url)
        async with AiohttpExecutor() as executor:
            with pytest.raises(aiohttp.ClientError) as excinfo:
                await executor.send(template, 5.0)
        assert classify_error(excinfo.value) is ErrorCategory.CONNECTION_REFUSED
