"""Session history reads, deletion, and CSV/JSON export endpoints."""

from __future__ import annotations

import asyncio
import csv
import io
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Path, Query
from fastapi.responses import Response

from ..api_models import DeleteSessionResponse, SessionListResponse
from ..errors import ResonanceMonitorError
from ..json_utils import safe_json_dumps
from ._helpers import http_error, safe_filename

if TYPE_CHECKING:
    from ..app import RuntimeState
    from ..models import Sample

LOGGER = logging.getLogger(__name__)

EXPORT_CSV_COLUMNS: tuple[str, ...] = (
    "sessionId",
    "deviceId",
    "timestamp",
    "deltaZ",
    "rawAcceleration",
    "frequency",
    "amplitude",
    "receivedAt",
)


def samples_to_csv(samples: list[Sample]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    writer.writerows(sample.to_dict() for sample in samples)
    return buffer.getvalue()


def _json_response(payload: Any) -> Response:
    # Stored signals may hold NaN; encode it as null instead of failing.
    return Response(content=safe_json_dumps(payload), media_type="application/json")


def create_history_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/sessions", response_model=SessionListResponse)
    async def list_sessions() -> SessionListResponse:
        sessions = await state.sessions.list_sessions()
        return SessionListResponse(sessions=[s.to_dict() for s in sessions])

    @router.get("/api/sessions/recent/{limit}", response_model=SessionListResponse)
    async def recent_sessions(
        limit: int = Path(ge=1, le=1000),
    ) -> SessionListResponse:
        sessions = await state.sessions.recent_sessions(limit)
        return SessionListResponse(sessions=[s.to_dict() for s in sessions])

    @router.get("/api/sessions/{session_id}")
    async def get_session(session_id: str) -> dict[str, Any]:
        try:
            session = await state.sessions.get_session(session_id)
        except ResonanceMonitorError as exc:
            raise http_error(exc) from exc
        return session.to_dict()

    @router.get("/api/sessions/{session_id}/data")
    async def get_session_data(session_id: str) -> Response:
        try:
            result = await state.sessions.session_data(session_id)
        except ResonanceMonitorError as exc:
            raise http_error(exc) from exc
        payload = {
            "session": result["session"].to_dict(),
            "data": result["data"],
            "frequencyData": result["frequencyData"],
        }
        return _json_response(payload)

    @router.get("/api/sessions/{session_id}/samples")
    async def get_session_samples(session_id: str) -> Response:
        try:
            samples = await state.sessions.session_samples(session_id)
        except ResonanceMonitorError as exc:
            raise http_error(exc) from exc
        return _json_response(
            {"sessionId": session_id, "samples": [s.to_dict() for s in samples]}
        )

    @router.get("/api/sessions/{session_id}/resonance")
    async def get_session_resonance(session_id: str) -> Response:
        try:
            result = await state.sessions.resonance(session_id)
        except ResonanceMonitorError as exc:
            raise http_error(exc) from exc
        return _json_response(result)

    @router.delete("/api/sessions/{session_id}", response_model=DeleteSessionResponse)
    async def delete_session(session_id: str) -> DeleteSessionResponse:
        try:
            await state.sessions.delete(session_id)
        except ResonanceMonitorError as exc:
            raise http_error(exc) from exc
        return DeleteSessionResponse(sessionId=session_id, status="deleted")

    @router.get("/api/export/{session_id}")
    async def export_session(
        session_id: str,
        format: str = Query(default="json", pattern="^(json|csv)$"),
    ) -> Response:
        try:
            session = await state.sessions.get_session(session_id)
            samples = await state.sessions.session_samples(session_id)
        except ResonanceMonitorError as exc:
            raise http_error(exc) from exc
        safe_name = safe_filename(session.name or session_id)
        if format == "csv":
            body = await asyncio.to_thread(samples_to_csv, samples)
            media_type = "text/csv"
        else:
            body = await asyncio.to_thread(
                safe_json_dumps,
                {
                    "session": session.to_dict(),
                    "sampleCount": len(samples),
                    "samples": [s.to_dict() for s in samples],
                },
            )
            media_type = "application/json"
        LOGGER.info("Exported session %s as %s (%d samples)", session_id, format, len(samples))
        return Response(
            content=body,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{safe_name}.{format}"'},
        )

    return router
