"""
Unit tests for the GatewayClient facade.
"""

import pytest
import httpx
from unittest.mock import patch

from dashboard_shared.errors import AuthExpiredError, UnauthenticatedError, ValidationError
from dashboard_shared.test_helpers import PbxPayloadFactory as f
from dashboard_shared.test_helpers import PbxStub, ok

from service_pbx_gateway.app.auth.token_store import TokenStore
from service_pbx_gateway.app.caching.result_cache import ResultCache
from service_pbx_gateway.app.domain.models import CallRecordFilters, ExtensionState, MonitorMode
from service_pbx_gateway.app.gateway_client import (
    INBOUND_ROUTES_KEY,
    ClientContext,
    GatewayClient,
    has_more_records,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context(clock):
    store = TokenStore()
    store.set("tok-123")
    return ClientContext(
        pbx_host="https://pbx.example.com",
        relay_url="http://localhost:3000",
        token_store=store,
        cache=ResultCache(60.0, clock=clock),
    )


@pytest.fixture
def client(context):
    return GatewayClient(context)


class TestPagination:

    def test_total_reported(self):
        assert has_more_records(1, 10, 10, 15) is True
        assert has_more_records(2, 10, 5, 15) is False
        assert has_more_records(1, 10, 10, 10) is False

    def test_total_missing_uses_full_page(self):
        assert has_more_records(1, 10, 10, None) is True
        assert has_more_records(1, 10, 9, None) is False


class TestGatewayClientReads:

    @pytest.mark.asyncio
    async def test_cached_list_is_idempotent(self, client):
        stub = PbxStub({"extension/list": f.extension_list()})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            first = await client.list_extensions()
            second = await client.list_extensions()

        assert first == second
        assert [ext.number for ext in first] == ["1001", "1002", "1003"]
        assert len(stub.calls("extension/list")) == 1

    @pytest.mark.asyncio
    async def test_cache_bypass_and_expiry(self, client, clock):
        stub = PbxStub({"queue/list": f.queue_list()})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            await client.list_queues()
            await client.list_queues(use_cache=False)
            clock.now += 61
            await client.list_queues()

        assert len(stub.calls("queue/list")) == 3

    @pytest.mark.asyncio
    async def test_list_ivrs(self, client):
        stub = PbxStub({"ivr/list": f.ivr_list()})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            ivrs = await client.list_ivrs()

        assert [(ivr.id, ivr.name) for ivr in ivrs] == [("21", "Main Menu")]

    @pytest.mark.asyncio
    async def test_reads_require_session(self, context):
        context.token_store.clear()
        client = GatewayClient(context)

        with patch('httpx.AsyncClient') as mock_client:
            stub = PbxStub().install(mock_client)
            with pytest.raises(UnauthenticatedError):
                await client.list_extensions()

        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_inbound_routes_and_get(self, client):
        stub = PbxStub({
            "inbound_route/list": f.inbound_route_list([
                f.inbound_route(1, "Day", business_hours_destination="queue", business_hours_destination_value="6001"),
                f.inbound_route(7, "Legacy", def_dest="queue", def_dest_value="", default_desination_value="6001"),
            ]),
            "inbound_route/get": ok(data=f.inbound_route(7, "Legacy", def_dest="ivr", def_dest_value="21")),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            routes = await client.list_inbound_routes()
            route = await client.get_inbound_route(7)

        assert routes[0].is_time_based is True
        assert routes[1].default_destination.label == "queue/6001"
        assert route.default_destination.label == "ivr/21"
        assert stub.calls("inbound_route/get")[0].params["id"] == "7"

    @pytest.mark.asyncio
    async def test_get_inbound_route_requires_id(self, client):
        with pytest.raises(ValidationError):
            await client.get_inbound_route("")

    @pytest.mark.asyncio
    async def test_call_records_with_total(self, client):
        stub = PbxStub({"cdr/list": f.cdr_list(10, total=15)})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            page = await client.list_call_records(2, 10)

        assert page.has_more is False
        assert page.total == 15
        assert len(page.records) == 10
        assert stub.requests[0].params["page"] == "2"

    @pytest.mark.asyncio
    async def test_call_records_without_total(self, client):
        stub = PbxStub({"cdr/list": f.cdr_list(10)})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            page = await client.list_call_records(1, 10)

        assert page.has_more is True
        assert page.total is None

    @pytest.mark.asyncio
    async def test_call_records_cached_per_query(self, client):
        stub = PbxStub({"cdr/list": f.cdr_list(3)})
        filters = CallRecordFilters(ext_num="1001", disposition="ANSWERED")

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            await client.list_call_records(1, 10, filters)
            await client.list_call_records(1, 10, filters)
            await client.list_call_records(2, 10, filters)

        calls = stub.calls("cdr/list")
        assert len(calls) == 2
        assert calls[0].params["ext_num"] == "1001"
        assert calls[0].params["disposition"] == "ANSWERED"

    @pytest.mark.asyncio
    async def test_call_records_rejects_bad_page(self, client):
        with pytest.raises(ValidationError):
            await client.list_call_records(0, 10)

    @pytest.mark.asyncio
    async def test_call_statistics(self, client):
        stub = PbxStub({
            "call_report/list": ok(data=[{"ext_num": "1001", "total_call_count": 4, "answered_calls": 3}]),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            stats = await client.call_statistics([1, 2], "2024-05-01 00:00:00", "2024-05-02 00:00:00")
            empty = await client.call_statistics([], "a", "b")

        assert stats[0].total_calls == 4
        assert empty == []
        params = stub.requests[0].params
        assert params["type"] == "extcallstatistics"
        assert params["ext_id_list"] == "1,2"

    @pytest.mark.asyncio
    async def test_extension_statuses_reuse_cached_list(self, client):
        stub = PbxStub({
            "extension/list": f.extension_list(),
            "call/query": ok(data=[]),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            await client.extension_statuses()
            statuses = await client.extension_statuses()

        assert len(stub.calls("extension/list")) == 1
        assert len(stub.calls("call/query")) == 6
        assert statuses[0].status is ExtensionState.IDLE


class TestGatewayClientWrites:

    @pytest.mark.asyncio
    async def test_update_invalidates_route_cache(self, client):
        stub = PbxStub({
            "inbound_route/list": f.inbound_route_list([f.inbound_route(7, "Main")]),
            "inbound_route/update": ok(),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            await client.list_inbound_routes()
            assert INBOUND_ROUTES_KEY in client.cache

            await client.update_inbound_route({
                "id": "7",
                "default_destination": "queue",
                "default_destination_value": "6001",
            })
            assert INBOUND_ROUTES_KEY not in client.cache

            await client.list_inbound_routes()

        assert len(stub.calls("inbound_route/list")) == 2
        update = stub.calls("inbound_route/update")[0]
        assert update.method == "POST"
        assert update.body == {"id": 7, "def_dest": "queue", "def_dest_value": "6001"}

    @pytest.mark.asyncio
    async def test_update_requires_id(self, client):
        with pytest.raises(ValidationError):
            await client.update_inbound_route({"def_dest": "queue"})

    @pytest.mark.asyncio
    async def test_call_control_bodies(self, client):
        stub = PbxStub({
            "call/hangup": ok(),
            "call/transfer": ok(),
            "call/park": ok(),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            assert await client.hangup("ch-1") is True
            assert await client.transfer("ch-1", "1002", "1001") is True
            assert await client.park("ch-1", "701") is True
            assert await client.park("ch-2") is True

        assert stub.calls("call/hangup")[0].body == {"channel_id": "ch-1"}
        assert stub.calls("call/transfer")[0].body == {
            "channel_id": "ch-1",
            "number": "1002",
            "dial_permission": "1001",
        }
        parks = stub.calls("call/park")
        assert parks[0].body == {"channel_id": "ch-1", "park_slot": "701"}
        assert parks[1].body == {"channel_id": "ch-2"}

    @pytest.mark.asyncio
    async def test_hangup_requires_channel(self, client):
        with pytest.raises(ValidationError):
            await client.hangup("")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["listen", "whisper", MonitorMode.BARGE])
    async def test_monitor_modes(self, client, mode):
        stub = PbxStub({f"extension/{MonitorMode(mode).value}": ok()})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            assert await client.monitor("1005", "ch-1", mode) is True

        assert stub.requests[0].body == {"ext_num": "1005", "channel_id": "ch-1"}

    @pytest.mark.asyncio
    async def test_monitor_rejects_unknown_mode(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            stub = PbxStub().install(mock_client)
            with pytest.raises(ValidationError) as exc_info:
                await client.monitor("1005", "ch-1", "spy")

        assert stub.requests == []
        assert exc_info.value.details["allowed"] == ["listen", "whisper", "barge"]

    @pytest.mark.asyncio
    async def test_expired_write_is_not_retried(self, client, context):
        stub = PbxStub({"call/hangup": {"errcode": 10004, "errmsg": "TOKEN EXPIRED"}})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            with pytest.raises(AuthExpiredError):
                await client.hangup("ch-1")

        assert len(stub.requests) == 1
        assert client.is_authenticated is False


class TestGatewayClientSession:

    @pytest.mark.asyncio
    async def test_authenticate_then_read(self, context):
        context.token_store.clear()
        client = GatewayClient(context)
        stub = PbxStub({
            "get_token": f.token("tok-new"),
            "ivr/list": f.ivr_list(),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            await client.authenticate("api-user", "api-pass")
            await client.list_ivrs()

        assert client.is_authenticated
        assert stub.calls("ivr/list")[0].params["access_token"] == "tok-new"

    @pytest.mark.asyncio
    async def test_authenticate_requires_credentials(self, client):
        with pytest.raises(ValidationError):
            await client.authenticate("", "secret")

    def test_logout_clears_token_and_cache(self, client):
        client.cache.set("extensions", [])
        client.logout()

        assert client.is_authenticated is False
        assert len(client.cache) == 0

    def test_invalidate_cache(self, client):
        client.cache.set("extensions", [])
        client.cache.set("cdr:page=1", {})
        client.invalidate_cache()

        assert len(client.cache) == 0
        assert client.is_authenticated is True

    def test_host_scheme_is_stripped(self, client):
        assert client.dispatcher.pbx_host == "pbx.example.com"


class TestConnectivityProbe:

    @pytest.mark.asyncio
    async def test_relay_healthy(self, client):
        stub = PbxStub({"api/health": {"status": "ok"}})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            report = await client.probe_connectivity()

        assert report.reachable is True
        assert report.relay_url == "http://localhost:3000"
        assert stub.requests[0].url == "http://localhost:3000/api/health"

    @pytest.mark.asyncio
    async def test_relay_down(self, client):
        stub = PbxStub({"api/health": httpx.ConnectError("Connection refused")})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            report = await client.probe_connectivity("http://relay.local:3000/")

        assert report.reachable is False
        assert report.relay_url == "http://relay.local:3000"
        assert "relay" in report.message.lower()

    @pytest.mark.asyncio
    async def test_relay_unhealthy(self, client):
        stub = PbxStub({"api/health": (502, "<html>bad gateway</html>")})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            report = await client.probe_connectivity()

        assert report.reachable is False
        assert "non-JSON" in report.message
