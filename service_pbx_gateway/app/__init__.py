"""
PBX dashboard gateway service package.

The gateway turns typed domain operations (extensions, queues, IVRs,
inbound routes, call records, live status) into authenticated, cached
calls through the CORS relay and normalizes the appliance's payloads.

Structure:
- app.main: FastAPI app, routes, and error mapping.
- app.gateway_client: GatewayClient facade and its ClientContext.
- app.adapters: Request dispatcher, error classifier, authentication.
- app.auth: Session-scoped token store.
- app.caching: In-process result cache.
- app.domain: Record types, payload normalization, status aggregation.
"""
