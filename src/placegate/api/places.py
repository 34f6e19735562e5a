from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt

from placegate.core.errors import StorageFailure
from placegate.core.store import Store, place_to_dict
from placegate.deps.client_auth import require_client_key
from placegate.deps.db import get_store

router = APIRouter(tags=["places"], dependencies=[Depends(require_client_key)])


class PlaceIn(BaseModel):
    # finite JSON numbers only: "45.5", true, NaN and Infinity are rejected
    model_config = ConfigDict(allow_inf_nan=False)

    latitude: StrictInt | StrictFloat
    longitude: StrictInt | StrictFloat


@router.get("/places")
async def list_places(store: Store = Depends(get_store)):
    try:
        places = await store.list_places()
    except StorageFailure:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server error")
    return [place_to_dict(p) for p in places]


@router.post("/places", status_code=status.HTTP_201_CREATED)
async def create_place(payload: PlaceIn, store: Store = Depends(get_store)):
    try:
        place = await store.create_place(latitude=float(payload.latitude), longitude=float(payload.longitude))
    except StorageFailure:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not create place")
    return place_to_dict(place)
