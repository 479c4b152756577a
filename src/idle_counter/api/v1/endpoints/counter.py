# src/idle_counter/api/v1/endpoints/counter.py
"""Counter endpoints: read, mutate, stream changes and trigger resets."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from idle_counter.api.v1.dependencies import RuntimeDep, TriggerAuthDep
from idle_counter.schemas.counter import CounterRead, ResetResponse
from idle_counter.services.counter_store import CounterSnapshot
from idle_counter.services.errors import ContentionExceededError, StoreUnavailableError
from idle_counter.services.runtime import CounterRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/counter", tags=["counter"])

_UPDATE_FAILED = "Counter update failed"
_RESET_FAILED = "Reset failed"


def _sse_frame(event: str, payload: dict[str, object]) -> bytes:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n".encode("utf-8")


@router.get("", response_model=CounterRead)
async def get_counter(runtime: RuntimeDep) -> CounterRead:
    """Return the counter, creating it at zero on first access."""
    try:
        counter = await runtime.mutations.get_or_init()
    except StoreUnavailableError as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Counter unavailable"
        ) from err
    return CounterRead.from_snapshot(counter)


async def _apply(runtime: CounterRuntime, action: str) -> CounterSnapshot:
    operation = runtime.mutations.increment if action == "increment" else runtime.mutations.decrement
    try:
        return await operation()
    except (StoreUnavailableError, ContentionExceededError) as err:
        logger.warning("Counter %s failed: %s", action, err)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_UPDATE_FAILED
        ) from err


@router.post("/increment", response_model=CounterRead)
async def increment_counter(runtime: RuntimeDep) -> CounterRead:
    """Add one to the counter."""
    return CounterRead.from_snapshot(await _apply(runtime, "increment"))


@router.post("/decrement", response_model=CounterRead)
async def decrement_counter(runtime: RuntimeDep) -> CounterRead:
    """Subtract one from the counter; a no-op at zero."""
    return CounterRead.from_snapshot(await _apply(runtime, "decrement"))


@router.get("/stream")
async def stream_counter(runtime: RuntimeDep) -> StreamingResponse:
    """Stream counter changes as Server-Sent Events.

    The first frame is a ``snapshot`` of the current state so reconnecting
    clients reconcile without a replay buffer; ``change`` frames follow for
    every newer version.
    """
    notifier = runtime.notifier

    async def event_source() -> AsyncIterator[bytes]:
        subscription = await notifier.subscribe()
        try:
            counter = await runtime.mutations.get_or_init()
            yield _sse_frame(
                "snapshot", CounterRead.from_snapshot(counter).model_dump(mode="json")
            )
            async for event in subscription:
                if event.version <= counter.version:
                    continue
                yield _sse_frame("change", event.json_payload())
        finally:
            await notifier.unsubscribe(subscription)

    return StreamingResponse(event_source(), media_type="text/event-stream")


@router.post("/reset", response_model=ResetResponse)
async def trigger_reset(runtime: RuntimeDep, _auth: TriggerAuthDep) -> ResetResponse:
    """Expiry callback: reset the counter if it is still idle.

    Intended for an external scheduler relaying lease expiry; requires the
    shared reset secret.
    """
    try:
        result = await runtime.coordinator.reset(require_idle=True)
    except (StoreUnavailableError, ContentionExceededError) as err:
        logger.exception("Triggered reset failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_RESET_FAILED
        ) from err
    return ResetResponse(outcome=result.outcome, counter=CounterRead.from_snapshot(result.counter))


@router.post("/idle-check", response_model=ResetResponse)
async def trigger_idle_check(runtime: RuntimeDep, _auth: TriggerAuthDep) -> ResetResponse:
    """Scheduled trigger: run one idleness poll and reset when the window has elapsed."""
    try:
        result = await runtime.check_idle()
        counter = result.counter if result is not None else await runtime.mutations.get_or_init()
    except (StoreUnavailableError, ContentionExceededError) as err:
        logger.exception("Scheduled idle check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_RESET_FAILED
        ) from err
    return ResetResponse(
        outcome=result.outcome if result is not None else None,
        counter=CounterRead.from_snapshot(counter),
    )
