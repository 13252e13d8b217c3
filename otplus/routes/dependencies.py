from __future__ import annotations

from fastapi import Request

from otplus.application import OverrideStore


def get_store(request: Request, ws_id: str) -> OverrideStore:
    """Return the override store of a workspace, creating it on first use."""

    stores: dict[str, OverrideStore] = request.app.state.stores
    store = stores.get(ws_id)
    if store is None:
        store = OverrideStore(ws_id, request.app.state.storage)
        stores[ws_id] = store
    return store
