"""
FastAPI server providing read-only visibility into the settlement engine.
This file wires:
- SettlementEngine (status, policies, settlement history)
- the engine's poll loop as a background task for the app's lifetime
- Web endpoints for inspection only; nothing here mutates state
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI

from core.models import Policy, SettlementRecord
from core.settlement_engine import SettlementEngine

logger = logging.getLogger(__name__)


def create_app(engine: SettlementEngine, run_engine: bool = True) -> FastAPI:
    """Build the status API for `engine`.

    With run_engine=True the engine's poll loop starts with the app and
    is stopped on shutdown (uvicorn turns SIGINT/SIGTERM into shutdown).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if run_engine:
            task = asyncio.create_task(engine.start())
        try:
            yield
        finally:
            engine.stop()
            if task is not None:
                await task

    app = FastAPI(title="Policy Settlement Engine API", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        """Liveness probe with a millisecond timestamp."""
        return {"status": "ok", "timestamp": int(time.time() * 1000)}

    @app.get("/status")
    async def status() -> Dict[str, Any]:
        """Network, wallet, recipient and settlement configuration."""
        return engine.get_status()

    @app.get("/settlements", response_model=List[SettlementRecord])
    async def settlements():
        """Settlement history, oldest first."""
        return engine.get_settlement_history()

    @app.get("/policies", response_model=List[Policy])
    async def policies():
        """Enabled policies."""
        return engine.policy_engine.get_active_policies()

    return app
