"""Pinned stop REST API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Response

from app.api.deps import get_stop_store
from app.core.stop_store import StopStore
from app.schemas.stop import PinStopRequest, PinStopResponse, StopInfo, StopList

router = APIRouter(prefix="/api/stops", tags=["stops"])


@router.get("", response_model=StopList)
async def list_stops(store: StopStore = Depends(get_stop_store)):
    """Get all pinned stops."""
    stops = await store.list_pinned()
    return StopList(stops=[StopInfo(stop_id=s.stop_id, name=s.name, pinned=s.pinned) for s in stops])


@router.post("", response_model=PinStopResponse, status_code=201)
async def pin_stop(body: PinStopRequest, store: StopStore = Depends(get_stop_store)):
    """Pin a stop so the background refresher keeps it warm."""
    stop = await store.pin(body.stop_id, body.name)
    return PinStopResponse(stop=StopInfo(stop_id=stop.stop_id, name=stop.name, pinned=stop.pinned))


@router.delete("/{stop_id}", status_code=204)
async def unpin_stop(stop_id: str, store: StopStore = Depends(get_stop_store)):
    if not stop_id.strip():
        raise HTTPException(status_code=400, detail="stopId is required")
    await store.unpin(stop_id)
    return Response(status_code=204)
