"""
Unit tests for the dashboard gateway service endpoints.
"""

import pytest
import httpx
from unittest.mock import patch
from fastapi.testclient import TestClient

from dashboard_shared.test_helpers import PbxPayloadFactory as f
from dashboard_shared.test_helpers import PbxStub, ok

from service_pbx_gateway.app.main import DashboardGatewayService, create_app


class TestDashboardGatewayService:
    """Test cases for DashboardGatewayService."""

    @pytest.fixture
    def service(self, monkeypatch):
        monkeypatch.setenv("PBX_PBX_HOST", "pbx.example.com")
        monkeypatch.setenv("PBX_RELAY_URL", "http://localhost:3000")
        return DashboardGatewayService()

    @pytest.fixture
    def client(self, service):
        return TestClient(service.app)

    @pytest.fixture
    def authenticated(self, service):
        service.client.context.token_store.set("tok-123")
        return service

    def test_create_app(self):
        app = create_app()
        assert app.title == "Gateway Service"

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "PBX Dashboard - Gateway"

    def test_health_reports_relay(self, client):
        stub = PbxStub({"api/health": {"status": "ok"}})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"relay": "ok", "pbx_session": "unauthenticated"}

    def test_metrics_endpoint(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "pbx_requests_total" in response.text

    def test_session_login_and_logout(self, client, service):
        stub = PbxStub({"get_token": f.token("tok-new")})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.post("/api/v1/session", json={"username": "api-user", "password": "api-pass"})

        assert response.status_code == 200
        assert response.json() == {"authenticated": True, "pbx_host": "pbx.example.com"}
        assert service.client.is_authenticated

        response = client.delete("/api/v1/session")
        assert response.json() == {"authenticated": False}
        assert not service.client.is_authenticated

    def test_session_bad_credentials(self, client):
        stub = PbxStub({"get_token": {"errcode": 10003, "errmsg": "USERNAME OR PASSWORD ERROR"}})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.post("/api/v1/session", json={"username": "api-user", "password": "nope"})

        assert response.status_code == 502
        data = response.json()
        assert data["kind"] == "remote_rejected"
        assert data["details"]["remote_code"] == 10003

    def test_session_host_override(self, client, service):
        stub = PbxStub({"get_token": f.token()})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.post("/api/v1/session", json={
                "username": "api-user",
                "password": "api-pass",
                "pbx_host": "https://other-pbx.example.com",
            })

        assert response.status_code == 200
        assert "/api/proxy/other-pbx.example.com/openapi/v1.0/get_token" in stub.requests[0].url

    @pytest.mark.parametrize("override", [
        {"pbx_host": "not a host"},
        {"pbx_host": "pbx.example.com/../admin"},
        {"relay_url": "ftp://relay.example.com"},
    ])
    def test_session_rejects_invalid_target(self, client, authenticated, override):
        stub = PbxStub({"get_token": f.token()})
        previous = authenticated.client

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.post("/api/v1/session", json={
                "username": "api-user",
                "password": "api-pass",
                **override,
            })

        assert response.status_code == 422
        assert response.json()["kind"] == "validation"
        assert stub.requests == []
        assert authenticated.client is previous
        assert previous.context.pbx_host == "pbx.example.com"
        assert previous.is_authenticated

    def test_unauthenticated_read(self, client):
        response = client.get("/api/v1/extensions", headers={"X-Request-ID": "req-1"})

        assert response.status_code == 401
        data = response.json()
        assert data["kind"] == "unauthenticated"
        assert data["request_id"] == "req-1"
        assert response.headers["X-Request-ID"] == "req-1"

    def test_list_extensions(self, client, authenticated):
        stub = PbxStub({"extension/list": f.extension_list()})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.get("/api/v1/extensions")

        assert response.status_code == 200
        assert [ext["number"] for ext in response.json()] == ["1001", "1002", "1003"]

    def test_queues_and_ivrs(self, client, authenticated):
        stub = PbxStub({"queue/list": f.queue_list(), "ivr/list": f.ivr_list()})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            queues = client.get("/api/v1/queues").json()
            ivrs = client.get("/api/v1/ivrs").json()

        assert [q["name"] for q in queues] == ["Sales", "Support"]
        assert ivrs == [{"id": "21", "name": "Main Menu"}]

    def test_inbound_routes(self, client, authenticated):
        stub = PbxStub({
            "inbound_route/list": f.inbound_route_list([f.inbound_route(7, "Main", def_dest="end_call")]),
            "inbound_route/get": ok(data=f.inbound_route(7, "Main")),
            "inbound_route/update": ok(),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            routes = client.get("/api/v1/inbound-routes").json()
            route = client.get("/api/v1/inbound-routes/7").json()
            updated = client.put("/api/v1/inbound-routes/7", json={
                "default_destination": "queue",
                "default_destination_value": "6001",
            })

        assert routes[0]["default_destination"]["label"] == "end_call"
        assert route["default_destination"]["label"] == "extension/1001"
        assert updated.status_code == 200
        assert stub.calls("inbound_route/update")[0].body == {"id": 7, "def_dest": "queue", "def_dest_value": "6001"}

    def test_call_records(self, client, authenticated):
        stub = PbxStub({"cdr/list": f.cdr_list(5, total=25)})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.get("/api/v1/call-records", params={"page": 1, "page_size": 5, "ext_num": "1001"})

        data = response.json()
        assert data["has_more"] is True
        assert data["total"] == 25
        assert len(data["records"]) == 5
        assert stub.requests[0].params["ext_num"] == "1001"

    def test_call_statistics(self, client, authenticated):
        stub = PbxStub({"call_report/list": ok(data=[{"ext_num": "1001", "total_call_count": 2}])})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.get("/api/v1/call-statistics", params={
                "ext_ids": "1,2",
                "start_time": "2024-05-01 00:00:00",
                "end_time": "2024-05-02 00:00:00",
            })

        assert response.json()[0]["total_calls"] == 2

    def test_status_endpoints(self, client, authenticated):
        stub = PbxStub({
            "extension/list": f.extension_list(),
            "queue/list": f.queue_list([(11, "Sales")]),
            "call/query?type=internal": f.call_list([
                f.call([f.extension_leg("1001", "ANSWERED", channel="ch-1"), f.extension_leg("1002", "RING")]),
            ]),
            "call/query": ok(data=[]),
            "queue/query_call": ok(data={"waiting_count": 1}),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            extensions = client.get("/api/v1/status/extensions").json()
            queues = client.get("/api/v1/status/queues").json()
            calls = client.get("/api/v1/status/calls").json()

        assert {e["ext_num"]: e["status"] for e in extensions} == {
            "1001": "busy",
            "1002": "ringing",
            "1003": "unavailable",
        }
        assert queues[0]["waiting_count"] == 1
        assert queues[0]["agents"] == []
        assert calls[0]["status"] == "ringing"
        assert calls[0]["call_type"] == "Internal"

    def test_call_control(self, client, authenticated):
        stub = PbxStub({
            "call/hangup": ok(),
            "call/transfer": ok(),
            "call/park": ok(),
            "extension/whisper": ok(),
        })

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            assert client.post("/api/v1/calls/ch-1/hangup").json() == {"ok": True}
            assert client.post("/api/v1/calls/ch-1/transfer", json={"destination": "1002"}).json() == {"ok": True}
            assert client.post("/api/v1/calls/ch-1/park", json={"lot": "701"}).json() == {"ok": True}
            assert client.post("/api/v1/calls/ch-1/monitor", json={"ext_num": "1005", "mode": "whisper"}).json() == {"ok": True}

        assert stub.calls("extension/whisper")[0].body == {"ext_num": "1005", "channel_id": "ch-1"}

    def test_monitor_unknown_mode(self, client, authenticated):
        response = client.post("/api/v1/calls/ch-1/monitor", json={"ext_num": "1005", "mode": "spy"})

        assert response.status_code == 422

    def test_auth_expired_surfaces(self, client, authenticated, service):
        stub = PbxStub({"call/hangup": {"errcode": 10004, "errmsg": "TOKEN EXPIRED"}})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.post("/api/v1/calls/ch-1/hangup")

        assert response.status_code == 401
        assert response.json()["kind"] == "auth_expired"
        assert not service.client.is_authenticated

    def test_unreachable_surfaces(self, client, authenticated):
        stub = PbxStub({"queue/list": httpx.ConnectError("Connection refused")})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.get("/api/v1/queues")

        assert response.status_code == 503
        assert response.json()["details"]["signature"] == "relay_down"

    def test_cache_invalidate(self, client, authenticated, service):
        service.client.cache.set("extensions", [])
        response = client.post("/api/v1/cache/invalidate")

        assert response.json() == {"invalidated": True}
        assert len(service.client.cache) == 0

    def test_connectivity(self, client):
        stub = PbxStub({"api/health": {"status": "ok"}})

        with patch('httpx.AsyncClient') as mock_client:
            stub.install(mock_client)
            response = client.get("/api/v1/connectivity")

        data = response.json()
        assert data["reachable"] is True
        assert data["relay_url"] == "http://localhost:3000"
