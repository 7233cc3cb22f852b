"""Fake worker shared by the client and observation tests."""

from typing import Optional

import httpx
import pytest
from fastapi import FastAPI, HTTPException, Request

WORKER_URL = "http://worker.test"


def make_worker_app(similar=None, observation_status=200):
    """Build a FastAPI stand-in for the worker's error endpoints."""
    app = FastAPI()
    app.state.observations = []
    app.state.errors = []
    app.state.queries = []

    @app.post("/api/sessions/observations")
    async def store_observation(request: Request):
        if observation_status != 200:
            raise HTTPException(status_code=observation_status, detail="storage unavailable")
        app.state.observations.append(await request.json())
        return {"success": True}

    @app.post("/api/sessions/errors")
    async def store_error(request: Request):
        app.state.errors.append(await request.json())
        return {"success": True}

    @app.get("/api/errors/similar")
    async def similar_errors(error_message: Optional[str] = None):
        if not error_message:
            raise HTTPException(status_code=400, detail="error_message is required")
        app.state.queries.append(error_message)
        return {"errors": similar or []}

    return app


@pytest.fixture
def worker_app():
    return make_worker_app(similar=[
        {"metadata": {"title": "ENOENT while installing packages"}},
        {"metadata": {}},
    ])


@pytest.fixture
def worker_transport(worker_app):
    return httpx.ASGITransport(app=worker_app)
