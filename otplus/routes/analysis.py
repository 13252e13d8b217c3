from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import Response
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from otplus.application import OverrideStore, ReportService
from otplus.core.overtime import calculate_analysis
from otplus.core.schema import AnalysisResult, Holiday, TimeEntry, TimeOffInfo, User, UserProfile
from otplus.core.validation import (
    ValidationError,
    parse_group_by,
    validate_date_range,
    validate_required_fields,
)
from otplus.exporters.analysis_csv import group_summaries_csv
from otplus.routes.dependencies import get_store

router = APIRouter(prefix="/workspaces", tags=["analysis"])

_ENTRIES = TypeAdapter(list[TimeEntry | None])
_USERS = TypeAdapter(list[User])
_PROFILES = TypeAdapter(dict[str, UserProfile])
_HOLIDAYS = TypeAdapter(dict[str, dict[str, Holiday]])
_TIME_OFF = TypeAdapter(dict[str, dict[str, TimeOffInfo]])


def _parse(adapter: TypeAdapter, value: Any, field: str) -> Any:
    try:
        return adapter.validate_python(value)
    except PydanticValidationError as exc:
        raise ValidationError(f"{field} is malformed: {exc.error_count()} error(s)") from exc


def _run_analysis(payload: dict, store: OverrideStore) -> AnalysisResult:
    date_range = None
    if payload.get("start") or payload.get("end"):
        date_range = validate_date_range(payload.get("start"), payload.get("end"))
    group_by = payload.get("group_by")
    return calculate_analysis(
        _parse(_ENTRIES, payload.get("entries") or [], "entries"),
        store,
        date_range,
        users=_parse(_USERS, payload.get("users") or [], "users"),
        profiles=_parse(_PROFILES, payload.get("profiles") or {}, "profiles"),
        holidays=_parse(_HOLIDAYS, payload.get("holidays") or {}, "holidays"),
        time_off=_parse(_TIME_OFF, payload.get("time_off") or {}, "time_off"),
        group_by=parse_group_by(group_by) if group_by is not None else None,
    )


@router.post("/{ws_id}/analysis")
async def run_analysis(ws_id: str, payload: dict, store: OverrideStore = Depends(get_store)) -> dict:
    result = _run_analysis(payload, store)
    return result.model_dump(mode="json")


@router.post("/{ws_id}/analysis/export")
async def export_analysis(ws_id: str, payload: dict, store: OverrideStore = Depends(get_store)) -> Response:
    result = _run_analysis(payload, store)
    return Response(
        content=group_summaries_csv(result),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="otplus-{result.group_by.value}.csv"'},
    )


@router.post("/{ws_id}/reports")
async def generate_report(
    ws_id: str,
    payload: dict,
    request: Request,
    store: OverrideStore = Depends(get_store),
    x_addon_token: str | None = Header(default=None),
) -> dict:
    if not x_addon_token:
        raise HTTPException(status_code=401, detail="X-Addon-Token header is required")
    validate_required_fields(payload, ("backend_url", "start", "end"), "Report request")
    claims = {"workspaceId": ws_id, "backendUrl": payload["backend_url"], "reportsUrl": payload.get("reports_url")}

    try:
        client = request.app.state.client_factory(x_addon_token, claims)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        run = await ReportService(client, store).generate(
            payload.get("start"),
            payload.get("end"),
            use_detailed_report=bool(payload.get("use_detailed_report", True)),
        )
    finally:
        await client.aclose()
    return {
        "result": run.result.model_dump(mode="json"),
        "status": run.status,
        "users_ok": run.users_ok,
        "warnings": run.warnings,
    }
