"""API routes for the check status board.

Endpoints:
  GET  /api/checks                — overall badge + every check, checkfile order
  GET  /api/checks/sections       — section titles with their check names
  GET  /api/checks/stream         — SSE stream of live check results
  GET  /api/checks/{name}         — one check
  POST /api/checks/{name}/run     — run a check now (skipped if already running)
  GET  /api/checks/{name}/debug   — command, last run output and run history
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from ..checks.state import CheckState
from ..orchestrator import Orchestrator

logger = logging.getLogger(__name__)

checks_router = APIRouter()

# ── SSE subscriber list (in-memory) ──────────────────────────────────────────

_sse_queues: list[asyncio.Queue[dict[str, Any]]] = []


def broadcast_result(state: CheckState) -> None:
    """Push a fresh check state to all SSE subscribers."""
    data = state.to_dict()
    for q in _sse_queues:
        try:
            q.put_nowait(data)
        except asyncio.QueueFull:
            pass  # slow consumer, drop


def _orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def _state_or_404(orchestrator: Orchestrator, name: str) -> CheckState:
    state = orchestrator.store.get(name)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Check not found: {name}")
    return state


# ── Read side ────────────────────────────────────────────────────────────────


@checks_router.get("/checks")
def list_checks(request: Request) -> dict[str, Any]:
    """Overall status plus a snapshot of every check."""
    orchestrator = _orchestrator(request)
    return {
        "overall": orchestrator.overall().to_dict(),
        "checks": [s.to_dict() for s in orchestrator.snapshot()],
        "watch_error": orchestrator.watch_failure,
    }


@checks_router.get("/checks/sections")
def list_sections(request: Request) -> dict[str, Any]:
    sections = _orchestrator(request).sections()
    return {"sections": [{"title": s.title, "checks": list(s.names)} for s in sections]}


@checks_router.get("/checks/stream")
async def checks_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream for real-time check results."""
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=50)
    _sse_queues.append(queue)

    async def event_generator():
        try:
            snapshot = [s.to_dict() for s in _orchestrator(request).snapshot()]
            yield f"event: init\ndata: {json.dumps(snapshot)}\n\n"

            while True:
                if await request.is_disconnected():
                    break
                try:
                    data = await asyncio.wait_for(queue.get(), timeout=30)
                    yield f"event: check\ndata: {json.dumps(data)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            _sse_queues.remove(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@checks_router.get("/checks/{name}")
def get_check(name: str, request: Request) -> dict[str, Any]:
    state = _state_or_404(_orchestrator(request), name)
    return state.to_dict()


@checks_router.get("/checks/{name}/debug")
def debug_check(name: str, request: Request) -> dict[str, Any]:
    """Everything needed to see why a check is in its current state."""
    orchestrator = _orchestrator(request)
    state = _state_or_404(orchestrator, name)
    definition = orchestrator.definition(name)
    return {
        "name": name,
        "command": definition.command if definition else None,
        "directory": str(definition.directory) if definition else None,
        "checkfile": str(definition.path) if definition else None,
        "running": orchestrator.scheduler.is_running(name),
        "state": state.to_dict(),
        "last_run": state.last_run.to_dict() if state.last_run else None,
        "history": [r.to_dict() for r in orchestrator.history(name)],
    }


# ── Actions ──────────────────────────────────────────────────────────────────


@checks_router.post("/checks/{name}/run")
async def run_check(name: str, request: Request) -> dict[str, Any]:
    """Run a check now. ``started`` is false if a run was already in flight."""
    orchestrator = _orchestrator(request)
    try:
        started = orchestrator.run_now(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Check not found: {name}")
    return {"name": name, "started": started}
