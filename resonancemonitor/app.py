"""Runtime orchestration: store, registry, ingest and sessions behind WS/API.

Boundary note for maintainers:
- Keep this module focused on wiring, not algorithm details.
- Spectral math belongs in ``processing/*``.
- Wire schemas belong in ``ws_models.py`` / ``api_models.py``.
"""

from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from .config import AppConfig, load_config
from .history_db import HistoryDB
from .ingest import SampleIngestor
from .registry import DeviceRegistry
from .routes import create_router
from .session import SessionStateMachine
from .ws_hub import ObserverHub

LOGGER = logging.getLogger(__name__)

SHUTDOWN_SUMMARY_TIMEOUT_S = 10.0


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    store: HistoryDB
    hub: ObserverHub
    registry: DeviceRegistry
    ingestor: SampleIngestor
    sessions: SessionStateMachine


def build_runtime(config: AppConfig) -> RuntimeState:
    store = HistoryDB(config.storage.db_path)
    hub = ObserverHub()
    registry = DeviceRegistry(hub)
    sessions: SessionStateMachine | None = None

    def _active_session():
        return sessions.active_session() if sessions is not None else None

    ingestor = SampleIngestor(
        store=store,
        hub=hub,
        active_session=_active_session,
        debounce_s=config.ingest.debounce_s,
        recent_capacity=config.ingest.recent_samples_capacity,
    )
    sessions = SessionStateMachine(
        store=store,
        hub=hub,
        ingestor=ingestor,
        analysis=config.analysis,
        beam=config.beam,
        default_sample_interval_ms=config.ingest.default_sample_interval_ms,
    )
    return RuntimeState(
        config=config,
        store=store,
        hub=hub,
        registry=registry,
        ingestor=ingestor,
        sessions=sessions,
    )


def create_app(config_path: Path | None = None) -> FastAPI:
    config = load_config(config_path)
    runtime = build_runtime(config)

    async def start_runtime() -> None:
        await runtime.sessions.recover_stale_sessions()

    async def stop_runtime() -> None:
        try:
            await runtime.ingestor.close()
        except Exception:
            LOGGER.warning("Error flushing ingest buffer on shutdown", exc_info=True)
        await runtime.sessions.close(SHUTDOWN_SUMMARY_TIMEOUT_S)
        try:
            runtime.store.close()
        except Exception:
            LOGGER.warning("Error closing session DB", exc_info=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await start_runtime()
        try:
            yield
        finally:
            await stop_runtime()

    app = FastAPI(title="Resonance Monitor", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


app: FastAPI | None = (
    create_app()
    if __name__ != "__main__" and os.getenv("RESONANCE_DISABLE_AUTO_APP", "0") != "1"
    else None
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the resonance monitor server")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    runtime_app = create_app(config_path=args.config)
    runtime: RuntimeState = runtime_app.state.runtime
    uvicorn.run(
        runtime_app,
        host=runtime.config.server.host,
        port=runtime.config.server.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
