"""
Backend client tests: headers, envelope handling and failure mapping.
"""

import asyncio

import httpx
import pytest


def _client(handler, timeout=2.0, token="secret-token"):
    from channelkit.services.backend_client import BackendClient
    return BackendClient(
        "http://backend.test/",
        auth_token=token,
        timeout=timeout,
        transport=httpx.MockTransport(handler),
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_bearer_header_and_base_url(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"success": True, "data": {"userId": "u1"}})

        client = _client(handler)
        try:
            profile = await client.get_user_profile()
        finally:
            await client.aclose()
        assert profile == {"userId": "u1"}
        assert seen["auth"] == "Bearer secret-token"
        assert seen["url"] == "http://backend.test/api/user/profile"

    @pytest.mark.asyncio
    async def test_no_token_no_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"success": True})

        client = _client(handler, token="")
        try:
            await client.delete_channel("r-1")
        finally:
            await client.aclose()
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_channel_list_shapes(self):
        bodies = [
            {"success": True, "channels": [{"id": "a"}]},
            {"success": True, "data": {"channels": [{"id": "b"}]}},
            {"success": True, "data": [{"id": "c"}]},
        ]
        for body in bodies:
            client = _client(lambda request, body=body: httpx.Response(200, json=body))
            try:
                channels = await client.get_user_channels()
            finally:
                await client.aclose()
            assert len(channels) == 1

    @pytest.mark.asyncio
    async def test_create_channel_returns_remote_id(self):
        client = _client(lambda request: httpx.Response(201, json={"success": True, "data": {"_id": "mongo-1"}}))
        try:
            assert await client.create_channel({"name": "x"}) == "mongo-1"
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_webhook_url_lookup(self):
        client = _client(lambda request: httpx.Response(200, json={"success": True, "webhookUrl": "https://h/x"}))
        try:
            assert await client.get_user_webhook_url() == "https://h/x"
        finally:
            await client.aclose()


class TestFailures:
    @pytest.mark.asyncio
    async def test_non_2xx_is_transport_error(self):
        from channelkit.errors import TransportError
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))
        try:
            with pytest.raises(TransportError) as exc:
                await client.get_user_profile()
        finally:
            await client.aclose()
        assert exc.value.status_code == 502
        assert not exc.value.is_timeout

    @pytest.mark.asyncio
    async def test_connection_error_is_transport_error(self):
        from channelkit.errors import TransportError

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)
        try:
            with pytest.raises(TransportError):
                await client.get_user_channels()
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout(self):
        from channelkit.errors import TransportError

        async def handler(request):
            await asyncio.sleep(0.5)
            return httpx.Response(200, json={"success": True})

        client = _client(handler, timeout=0.05)
        try:
            with pytest.raises(TransportError) as exc:
                await client.get_user_profile()
        finally:
            await client.aclose()
        assert exc.value.is_timeout

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        from channelkit.errors import MalformedRemoteData
        client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))
        try:
            with pytest.raises(MalformedRemoteData):
                await client.get_user_profile()
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_json_array_body(self):
        from channelkit.errors import MalformedRemoteData
        client = _client(lambda request: httpx.Response(200, json=[1, 2, 3]))
        try:
            with pytest.raises(MalformedRemoteData):
                await client.get_user_channels()
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_success_false_is_rejection(self):
        from channelkit.errors import RemoteRejection
        client = _client(lambda request: httpx.Response(200, json={"success": False, "message": "quota exceeded"}))
        try:
            with pytest.raises(RemoteRejection) as exc:
                await client.create_channel({"name": "x"})
        finally:
            await client.aclose()
        assert exc.value.detail == "quota exceeded"

    @pytest.mark.asyncio
    async def test_connection_test_allows_failure_envelope(self):
        client = _client(lambda request: httpx.Response(200, json={"success": False, "message": "bad token"}))
        try:
            body = await client.test_channel_connection("LINE", "k", "s")
        finally:
            await client.aclose()
        assert body["success"] is False

    @pytest.mark.asyncio
    async def test_created_channel_without_id(self):
        from channelkit.errors import MalformedRemoteData
        client = _client(lambda request: httpx.Response(201, json={"success": True, "channel": {}}))
        try:
            with pytest.raises(MalformedRemoteData):
                await client.create_channel({"name": "x"})
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_channels_array(self):
        from channelkit.errors import MalformedRemoteData
        client = _client(lambda request: httpx.Response(200, json={"success": True}))
        try:
            with pytest.raises(MalformedRemoteData):
                await client.get_user_channels()
        finally:
            await client.aclose()
