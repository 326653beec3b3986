"""Health check endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from ..api_models import HealthResponse

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_health_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        active = state.sessions.active_session()
        return HealthResponse(
            status="ok",
            sessionActive=active is not None,
            activeSessionId=active.id if active is not None else None,
            connectedDevices=state.registry.list_connected(),
            observers=await state.hub.count(),
            samplesAccepted=state.ingestor.samples_accepted,
            samplesDropped=state.ingestor.samples_dropped,
            sampleWriteFailures=state.ingestor.write_failures,
        )

    return router
