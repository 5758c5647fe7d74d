"""Adapters package - Bridge between an execution server and the client.

This package contains the REST/SSE client, the event stream reader, the
reconciler that applies events to local state, and the bridge that owns
a connection cycle.
"""
from __future__ import annotations

__all__ = [
    "ServerBridge",
    "ServerClient",
    "EventStreamReader",
    "Reconciler",
    "PermissionTracker",
    "ServerEvent",
    "normalize_event",
    "wait_for_healthy",
    "HealthProbe",
    "HealthStatus",
]

from openwork.adapters.bridge import ServerBridge
from openwork.adapters.events import ServerEvent, normalize_event
from openwork.adapters.event_stream import EventStreamReader
from openwork.adapters.health import HealthProbe, HealthStatus, wait_for_healthy
from openwork.adapters.permission_store import PermissionTracker
from openwork.adapters.reconciler import Reconciler
from openwork.adapters.server_client import ServerClient
