import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from lifesync.core.errors import PreconditionFailed, RecordNotFound, StoreError
from lifesync.core.incident_store import (
    COLLECTION,
    InMemoryIncidentStore,
    incident_key,
    split_key,
)
from lifesync.models.incidents import NewIncidentRecord, NewRecordResponse, RecordUpdateRequest

router = APIRouter()
logger = logging.getLogger(__name__)

# A single instance shared by every connected client. All conditional writes
# for an incident are serialized here.
incident_store = InMemoryIncidentStore()


def get_incident_store() -> InMemoryIncidentStore:
    return incident_store


async def sse_events(store: InMemoryIncidentStore, key: str) -> AsyncIterator[str]:
    """
    Yield one Server-Sent Event per value delivered for `key`.

    The store subscription lives exactly as long as the generator; it is
    released when the client disconnects and the generator is closed.
    """
    queue: asyncio.Queue = asyncio.Queue()
    subscription = store.subscribe(key, queue.put_nowait)
    try:
        while True:
            value = await queue.get()
            yield f"data: {json.dumps(value)}\n\n"
    finally:
        subscription.cancel()
        logger.info(f"Stream for '{key}' closed")


@router.post(
    f"/{COLLECTION}",
    status_code=status.HTTP_201_CREATED,
    response_model=NewRecordResponse,
)
async def create_emergency(
    request: NewIncidentRecord,
    store: InMemoryIncidentStore = Depends(get_incident_store),
):
    """
    Create a pending incident. The store assigns its id and createdAt.
    """
    incident_id = await store.create(COLLECTION, request.to_record())
    return NewRecordResponse(id=incident_id)


@router.get(f"/{COLLECTION}")
async def list_emergencies(store: InMemoryIncidentStore = Depends(get_incident_store)):
    """Snapshot of the whole collection, or null when it is empty."""
    return await store.get(COLLECTION)


@router.get(f"/{COLLECTION}/{{incident_id}}")
async def get_emergency(
    incident_id: str,
    store: InMemoryIncidentStore = Depends(get_incident_store),
):
    record = await store.get(incident_key(incident_id))
    if record is None:
        raise HTTPException(status_code=404, detail="Incident not found")
    return record


@router.patch(f"/{COLLECTION}/{{incident_id}}")
async def update_emergency(
    incident_id: str,
    request: RecordUpdateRequest,
    store: InMemoryIncidentStore = Depends(get_incident_store),
) -> Dict[str, Any]:
    """
    Merge-write fields into an incident.

    With `expect`, the write commits only if the current record matches;
    otherwise 409 is returned with the current record in `detail.current`.
    """
    try:
        return await store.update(incident_key(incident_id), request.fields, request.expect)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Incident not found")
    except PreconditionFailed as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Precondition failed", "current": e.current},
        )
    except StoreError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/stream")
async def stream(
    key: str = Query(..., description="`emergencies` or `emergencies/{id}`"),
    store: InMemoryIncidentStore = Depends(get_incident_store),
):
    """
    Server-Sent Events carrying the current value at `key` and every change.
    """
    try:
        collection, _ = split_key(key)
    except StoreError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if collection != COLLECTION:
        raise HTTPException(status_code=404, detail=f"Unknown collection '{collection}'")

    return StreamingResponse(
        sse_events(store, key),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
