from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from otplus.application import OverrideStore
from otplus.routes.dependencies import get_store

router = APIRouter(prefix="/workspaces", tags=["overrides"])


def _serialise(store: OverrideStore) -> dict:
    return {user_id: record.to_dict() for user_id, record in store.overrides.items()}


@router.get("/{ws_id}/overrides")
async def list_overrides(ws_id: str, store: OverrideStore = Depends(get_store)) -> dict:
    return {"ws_id": ws_id, "items": _serialise(store)}


@router.get("/{ws_id}/overrides/{user_id}")
async def get_override(ws_id: str, user_id: str, store: OverrideStore = Depends(get_store)) -> dict:
    record = store.get_override(user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="override not found")
    return {"user_id": user_id, **record.to_dict()}


@router.put("/{ws_id}/overrides/{user_id}/mode")
async def set_mode(ws_id: str, user_id: str, payload: dict, store: OverrideStore = Depends(get_store)) -> dict:
    if not store.set_override_mode(user_id, payload.get("mode")):
        raise HTTPException(status_code=400, detail="mode must be one of none, global, perDay")
    record = store.get_override(user_id)
    return {"user_id": user_id, "override": record.to_dict() if record else None}


@router.patch("/{ws_id}/overrides/{user_id}")
async def update_override(ws_id: str, user_id: str, payload: dict, store: OverrideStore = Depends(get_store)) -> dict:
    if not payload:
        raise HTTPException(status_code=400, detail="no fields to update")
    rejected = [field for field, value in payload.items() if not store.update_override(user_id, field, value)]
    if rejected:
        raise HTTPException(status_code=400, detail=f"rejected fields: {', '.join(rejected)}")
    record = store.get_override(user_id)
    return {"user_id": user_id, "override": record.to_dict() if record else None}


@router.patch("/{ws_id}/overrides/{user_id}/days/{date_key}")
async def update_day(
    ws_id: str,
    user_id: str,
    date_key: str,
    payload: dict,
    store: OverrideStore = Depends(get_store),
) -> dict:
    if not payload:
        raise HTTPException(status_code=400, detail="no fields to update")
    rejected = [
        field for field, value in payload.items() if not store.update_per_day_override(user_id, date_key, field, value)
    ]
    if rejected:
        raise HTTPException(status_code=400, detail=f"rejected fields: {', '.join(rejected)}")
    record = store.get_override(user_id)
    return {"user_id": user_id, "override": record.to_dict() if record else None}


@router.post("/{ws_id}/overrides/{user_id}/copy-to-days")
async def copy_to_days(ws_id: str, user_id: str, payload: dict, store: OverrideStore = Depends(get_store)) -> dict:
    dates = payload.get("dates")
    if not isinstance(dates, list) or not dates:
        raise HTTPException(status_code=400, detail="dates must be a non-empty list")
    if not store.copy_global_to_per_day(user_id, dates):
        raise HTTPException(status_code=400, detail="override could not be copied")
    return {"user_id": user_id, "override": store.get_override(user_id).to_dict()}


@router.delete("/{ws_id}/overrides/{user_id}")
async def clear_override(ws_id: str, user_id: str, store: OverrideStore = Depends(get_store)) -> dict:
    store.clear_override(user_id)
    return {"user_id": user_id, "override": None}


@router.get("/{ws_id}/config")
async def get_config(ws_id: str, store: OverrideStore = Depends(get_store)) -> dict:
    return {
        "config": store.config.model_dump(mode="json"),
        "calc_params": store.calc_params.model_dump(mode="json"),
    }


@router.patch("/{ws_id}/config")
async def update_config(ws_id: str, payload: dict, store: OverrideStore = Depends(get_store)) -> dict:
    config_changes = payload.get("config") or {}
    param_changes = payload.get("calc_params") or {}
    if not isinstance(config_changes, dict) or not isinstance(param_changes, dict):
        raise HTTPException(status_code=400, detail="config and calc_params must be objects")
    if config_changes:
        store.update_config(**config_changes)
    if param_changes:
        store.update_calc_params(**param_changes)
    return {
        "config": store.config.model_dump(mode="json"),
        "calc_params": store.calc_params.model_dump(mode="json"),
    }
