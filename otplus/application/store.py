"""Override and configuration store for one workspace."""
from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from otplus.core.defaults import default_calc_params, default_config
from otplus.core.durations import weekday_key
from otplus.core.schema import CalcParams, OverrideMode, OvertimeConfig
from otplus.core.validation import (
    ValidationError,
    coerce_override_number,
    coerce_working_days,
    parse_group_by,
    parse_override_mode,
    validate_iso_date,
)
from otplus.domain import DayOverride, OverrideRecord
from otplus.domain.overrides import NUMERIC_FIELDS
from otplus.infrastructure.storage import KeyValueStore

logger = logging.getLogger(__name__)

OVERRIDES_KEY_PREFIX = "overtime_overrides_"
CONFIG_KEY_PREFIX = "otplus_config_"

_MINIMUMS: dict[str, Decimal] = {
    "capacity": Decimal("0"),
    "tier2_threshold": Decimal("0"),
    "multiplier": Decimal("1"),
    "tier2_multiplier": Decimal("1"),
}
GLOBAL_FIELDS = frozenset({*NUMERIC_FIELDS, "working_days"})
PER_DAY_FIELDS = frozenset({*NUMERIC_FIELDS, "is_working_day"})


class OverrideStore:
    """Owns per-user overrides and the calculation configuration of a workspace.

    Every mutation is persisted through the key-value collaborator. Persistence
    is best effort: a failed write is logged and the in-memory change stays.
    """

    def __init__(
        self,
        workspace_id: str,
        storage: KeyValueStore,
        *,
        config: OvertimeConfig | None = None,
        calc_params: CalcParams | None = None,
    ) -> None:
        if not workspace_id:
            raise ValidationError("workspace id is required")
        self.workspace_id = workspace_id
        self._storage = storage
        self._overrides: dict[str, OverrideRecord] = {}
        self.config = config or default_config()
        self.calc_params = calc_params or default_calc_params()
        self.load()

    @property
    def overrides_key(self) -> str:
        return f"{OVERRIDES_KEY_PREFIX}{self.workspace_id}"

    @property
    def config_key(self) -> str:
        return f"{CONFIG_KEY_PREFIX}{self.workspace_id}"

    @property
    def overrides(self) -> Mapping[str, OverrideRecord]:
        return MappingProxyType(self._overrides)

    def get_override(self, user_id: str) -> OverrideRecord | None:
        return self._overrides.get(user_id)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def _read_json(self, key: str, label: str) -> Any:
        try:
            raw = self._storage.get(key)
        except (OSError, ValueError):
            logger.warning("Could not read stored %s", label, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Stored %s are not valid JSON; starting empty", label)
            return None

    def _write_json(self, key: str, payload: Any, label: str) -> bool:
        try:
            self._storage.set(key, json.dumps(payload))
        except Exception:
            logger.exception("Failed to persist %s", label)
            return False
        return True

    def load(self) -> None:
        data = self._read_json(self.overrides_key, "overrides")
        records: dict[str, OverrideRecord] = {}
        if isinstance(data, dict):
            for user_id, raw in data.items():
                try:
                    record = OverrideRecord.from_dict(raw)
                except ValueError:
                    logger.warning("Skipping malformed override record")
                    continue
                if record.mode is not OverrideMode.NONE:
                    records[str(user_id)] = record
        elif data is not None:
            logger.warning("Stored overrides have an unexpected shape; starting empty")
        self._overrides = records

        stored = self._read_json(self.config_key, "configuration")
        if not isinstance(stored, dict):
            return
        try:
            if isinstance(stored.get("config"), dict):
                self.config = OvertimeConfig.model_validate({**self.config.model_dump(), **stored["config"]})
            if isinstance(stored.get("calc_params"), dict):
                self.calc_params = CalcParams.model_validate(
                    {**self.calc_params.model_dump(), **stored["calc_params"]}
                )
        except PydanticValidationError:
            logger.warning("Stored configuration is invalid; keeping defaults")

    def save(self) -> bool:
        payload = {user_id: record.to_dict() for user_id, record in self._overrides.items()}
        return self._write_json(self.overrides_key, payload, "overrides")

    def save_config(self) -> bool:
        payload = {
            "config": self.config.model_dump(mode="json"),
            "calc_params": self.calc_params.model_dump(mode="json"),
        }
        return self._write_json(self.config_key, payload, "configuration")

    # ------------------------------------------------------------------
    # override mutations
    # ------------------------------------------------------------------
    @staticmethod
    def _parse_value(field: str, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if field == "working_days":
            return coerce_working_days(value)
        if field == "is_working_day":
            if not isinstance(value, bool):
                raise ValidationError("is_working_day must be true or false")
            return value
        return coerce_override_number(field, value, minimum=_MINIMUMS[field])

    def set_override_mode(self, user_id: str, mode: Any) -> bool:
        if not user_id:
            return False
        try:
            parsed = parse_override_mode(mode)
        except ValidationError as exc:
            logger.info("Rejected override mode: %s", exc)
            return False

        if parsed is OverrideMode.NONE:
            self._overrides.pop(user_id, None)
        else:
            record = self._overrides.get(user_id) or OverrideRecord(mode=parsed)
            record.mode = parsed
            if parsed is not OverrideMode.PER_DAY:
                record.per_day_overrides = {}
            self._overrides[user_id] = record
        self.save()
        return True

    def update_override(self, user_id: str, field: str, value: Any) -> bool:
        if not user_id or field not in GLOBAL_FIELDS:
            return False
        try:
            parsed = self._parse_value(field, value)
        except ValidationError as exc:
            logger.info("Rejected override %s: %s", field, exc)
            return False

        record = self._overrides.get(user_id)
        if record is None:
            if parsed is None:
                return True
            record = OverrideRecord(mode=OverrideMode.GLOBAL)
            self._overrides[user_id] = record
        setattr(record, field, parsed)
        self.save()
        return True

    def update_per_day_override(self, user_id: str, date_key: Any, field: str, value: Any) -> bool:
        if not user_id or field not in PER_DAY_FIELDS:
            return False
        try:
            key = validate_iso_date(date_key).isoformat()
            parsed = self._parse_value(field, value)
        except ValidationError as exc:
            logger.info("Rejected per-day override %s: %s", field, exc)
            return False

        record = self._overrides.get(user_id)
        if record is None:
            record = OverrideRecord(mode=OverrideMode.PER_DAY)
            self._overrides[user_id] = record
        elif record.mode is not OverrideMode.PER_DAY:
            logger.debug("Switching override record to per-day mode")
            record.mode = OverrideMode.PER_DAY

        day = record.per_day_overrides.setdefault(key, DayOverride())
        setattr(day, field, parsed)
        if day.is_empty():
            del record.per_day_overrides[key]
        self.save()
        return True

    def copy_global_to_per_day(self, user_id: str, dates: Iterable[Any]) -> bool:
        """Seed per-day entries for ``dates`` from the user's global values."""

        record = self._overrides.get(user_id)
        if record is None:
            return False
        try:
            days = [validate_iso_date(value) for value in dates]
        except ValidationError as exc:
            logger.info("Rejected per-day copy: %s", exc)
            return False

        record.mode = OverrideMode.PER_DAY
        template = record.global_values()
        for day in days:
            target = record.per_day_overrides.setdefault(day.isoformat(), DayOverride())
            for name in NUMERIC_FIELDS:
                value = getattr(template, name)
                if value is not None:
                    setattr(target, name, value)
            if record.working_days is not None:
                target.is_working_day = weekday_key(day) in record.working_days
            if target.is_empty():
                del record.per_day_overrides[day.isoformat()]
        self.save()
        return True

    def clear_override(self, user_id: str) -> bool:
        return self.set_override_mode(user_id, OverrideMode.NONE)

    # ------------------------------------------------------------------
    # configuration
    # ------------------------------------------------------------------
    @staticmethod
    def _merge(model: Any, changes: Mapping[str, Any]) -> Any:
        unknown = sorted(set(changes) - set(type(model).model_fields))
        if unknown:
            raise ValidationError(f"unknown settings: {', '.join(unknown)}")
        try:
            return type(model).model_validate({**model.model_dump(), **changes})
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc

    def update_config(self, **changes: Any) -> OvertimeConfig:
        if "group_by" in changes:
            changes["group_by"] = parse_group_by(changes["group_by"])
        self.config = self._merge(self.config, changes)
        self.save_config()
        return self.config

    def update_calc_params(self, **changes: Any) -> CalcParams:
        self.calc_params = self._merge(self.calc_params, changes)
        self.save_config()
        return self.calc_params


__all__ = ["OverrideStore", "OVERRIDES_KEY_PREFIX", "CONFIG_KEY_PREFIX"]
