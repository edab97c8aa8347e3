"""
Domain layer for the gateway: record types, payload normalization and
live status aggregation.
"""

from .models import (
    ActiveCall,
    AgentStatus,
    CallRecord,
    CallRecordFilters,
    CallRecordPage,
    CallStatistics,
    ConnectivityReport,
    Extension,
    ExtensionStatus,
    InboundRoute,
    IVR,
    MonitorMode,
    Queue,
    QueueStatus,
    RouteDestination,
)
from .status_aggregator import StatusAggregator

__all__ = [
    "ActiveCall",
    "AgentStatus",
    "CallRecord",
    "CallRecordFilters",
    "CallRecordPage",
    "CallStatistics",
    "ConnectivityReport",
    "Extension",
    "ExtensionStatus",
    "InboundRoute",
    "IVR",
    "MonitorMode",
    "Queue",
    "QueueStatus",
    "RouteDestination",
    "StatusAggregator",
]
