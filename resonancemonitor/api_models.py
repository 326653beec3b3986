"""Pydantic response models for the read-only HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    sessionActive: bool
    activeSessionId: str | None = None
    connectedDevices: list[str] = []
    observers: int = 0
    samplesAccepted: int = 0
    samplesDropped: int = 0
    sampleWriteFailures: int = 0


class SessionListResponse(BaseModel):
    sessions: list[dict[str, Any]]


class DeleteSessionResponse(BaseModel):
    sessionId: str
    status: str
