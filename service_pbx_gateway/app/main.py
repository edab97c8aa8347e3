"""
Dashboard gateway service for the PBX operator dashboard.
"""

from typing import Any, Dict, List, Optional

from fastapi import Query
from pydantic import BaseModel, Field

from dashboard_shared.base_service import BaseService
from dashboard_shared.errors import ValidationError
from dashboard_shared.logging import set_operator_context

from service_pbx_gateway.app.adapters.dispatcher import validate_pbx_host, validate_relay_url
from service_pbx_gateway.app.domain.models import CallRecordFilters, MonitorMode
from service_pbx_gateway.app.gateway_client import ClientContext, GatewayClient


class SessionRequest(BaseModel):
    """Credentials for the PBX OpenAPI."""
    username: str = Field(..., description="API client id")
    password: str = Field(..., description="API client secret")
    pbx_host: Optional[str] = Field(None, description="PBX host, overrides configuration")
    relay_url: Optional[str] = Field(None, description="CORS relay base URL, overrides configuration")


class RouteUpdateRequest(BaseModel):
    """Patch for an inbound route; unknown appliance fields pass through."""
    model_config = {"extra": "allow"}

    default_destination: Optional[str] = Field(None, description="extension | queue | ivr | end_call")
    default_destination_value: Optional[str] = Field(None, description="Target id for the destination")


class TransferRequest(BaseModel):
    destination: str
    dial_permission: str = ""


class ParkRequest(BaseModel):
    lot: Optional[str] = None


class MonitorRequest(BaseModel):
    ext_num: str
    mode: MonitorMode


class DashboardGatewayService(BaseService):
    """Gateway service exposing the PBX domain operations as JSON endpoints."""

    def __init__(self):
        super().__init__("gateway", 8000)
        self.session: Dict[str, str] = {}
        self.client = self._build_client()
        self._setup_gateway_routes()

    def _build_client(self, pbx_host: Optional[str] = None, relay_url: Optional[str] = None) -> GatewayClient:
        context = ClientContext.from_config(self.config, session=self.session, metrics=self.metrics)
        if pbx_host:
            context.pbx_host = pbx_host
        if relay_url:
            context.relay_url = relay_url
        return GatewayClient(context, metrics=self.metrics)

    async def _check_dependencies(self) -> Dict[str, str]:
        report = await self.client.probe_connectivity()
        return {
            "relay": "ok" if report.reachable else "error",
            "pbx_session": "authenticated" if self.client.is_authenticated else "unauthenticated",
        }

    def _setup_gateway_routes(self):
        """Set up gateway routes."""
        app = self.app

        @app.get("/")
        async def root():
            return {"service": self.service_name, "message": "PBX Dashboard - Gateway"}

        @app.post("/api/v1/session")
        async def login(request: SessionRequest):
            if request.pbx_host or request.relay_url:
                pbx_host = validate_pbx_host(request.pbx_host) if request.pbx_host else None
                relay_url = validate_relay_url(request.relay_url) if request.relay_url else None
                self.client.logout()
                self.client = self._build_client(pbx_host, relay_url)
            set_operator_context(request.username)
            await self.client.authenticate(request.username, request.password)
            return {"authenticated": True, "pbx_host": self.client.context.pbx_host}

        @app.delete("/api/v1/session")
        async def logout():
            self.client.logout()
            return {"authenticated": False}

        @app.get("/api/v1/extensions")
        async def list_extensions(use_cache: bool = True) -> List[Dict[str, Any]]:
            return [item.to_dict() for item in await self.client.list_extensions(use_cache)]

        @app.get("/api/v1/queues")
        async def list_queues(use_cache: bool = True) -> List[Dict[str, Any]]:
            return [item.to_dict() for item in await self.client.list_queues(use_cache)]

        @app.get("/api/v1/ivrs")
        async def list_ivrs(use_cache: bool = True) -> List[Dict[str, Any]]:
            return [item.to_dict() for item in await self.client.list_ivrs(use_cache)]

        @app.get("/api/v1/inbound-routes")
        async def list_inbound_routes(use_cache: bool = True) -> List[Dict[str, Any]]:
            return [item.to_dict() for item in await self.client.list_inbound_routes(use_cache)]

        @app.get("/api/v1/inbound-routes/{route_id}")
        async def get_inbound_route(route_id: str):
            route = await self.client.get_inbound_route(route_id)
            if route is None:
                raise ValidationError(f"Inbound route {route_id} not found", details={"route_id": route_id})
            return route.to_dict()

        @app.put("/api/v1/inbound-routes/{route_id}")
        async def update_inbound_route(route_id: str, request: RouteUpdateRequest):
            patch = {key: value for key, value in request.model_dump().items() if value is not None}
            patch["id"] = route_id
            await self.client.update_inbound_route(patch)
            return {"updated": True, "route_id": route_id}

        @app.get("/api/v1/call-records")
        async def list_call_records(
            page: int = Query(1, ge=1),
            page_size: int = Query(10, ge=1, le=1000),
            start_time: Optional[str] = None,
            end_time: Optional[str] = None,
            ext_num: Optional[str] = None,
            disposition: Optional[str] = None,
            use_cache: bool = True,
        ):
            filters = CallRecordFilters(
                start_time=start_time,
                end_time=end_time,
                ext_num=ext_num,
                disposition=disposition,
            )
            result = await self.client.list_call_records(page, page_size, filters, use_cache)
            return result.to_dict()

        @app.get("/api/v1/call-statistics")
        async def call_statistics(
            ext_ids: str = Query(..., description="Comma separated extension ids"),
            start_time: str = Query(...),
            end_time: str = Query(...),
        ):
            stats = await self.client.call_statistics(ext_ids.split(","), start_time, end_time)
            return [item.to_dict() for item in stats]

        @app.get("/api/v1/status/extensions")
        async def extension_statuses(ext_ids: Optional[str] = None, use_cache: bool = True):
            ids = ext_ids.split(",") if ext_ids else None
            return [item.to_dict() for item in await self.client.extension_statuses(ids, use_cache)]

        @app.get("/api/v1/status/queues")
        async def queue_statuses(queue_id: Optional[str] = None, use_cache: bool = True):
            return [item.to_dict() for item in await self.client.queue_statuses(queue_id, use_cache)]

        @app.get("/api/v1/status/calls")
        async def active_calls():
            return [item.to_dict() for item in await self.client.active_calls()]

        @app.post("/api/v1/calls/{channel_id}/hangup")
        async def hangup(channel_id: str):
            return {"ok": await self.client.hangup(channel_id)}

        @app.post("/api/v1/calls/{channel_id}/transfer")
        async def transfer(channel_id: str, request: TransferRequest):
            return {"ok": await self.client.transfer(channel_id, request.destination, request.dial_permission)}

        @app.post("/api/v1/calls/{channel_id}/park")
        async def park(channel_id: str, request: Optional[ParkRequest] = None):
            return {"ok": await self.client.park(channel_id, request.lot if request else None)}

        @app.post("/api/v1/calls/{channel_id}/monitor")
        async def monitor(channel_id: str, request: MonitorRequest):
            return {"ok": await self.client.monitor(request.ext_num, channel_id, request.mode)}

        @app.post("/api/v1/cache/invalidate")
        async def invalidate_cache():
            self.client.invalidate_cache()
            return {"invalidated": True}

        @app.get("/api/v1/connectivity")
        async def connectivity(relay_url: Optional[str] = None):
            report = await self.client.probe_connectivity(relay_url)
            return report.to_dict()


def create_app():
    """Create the gateway FastAPI application."""
    service = DashboardGatewayService()
    return service.app


def main():
    service = DashboardGatewayService()
    service.run()


if __name__ == "__main__":
    main()
