import json
import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from otplus.application.store import OverrideStore
from otplus.core.schema import GroupBy, OverrideMode
from otplus.core.validation import ValidationError
from otplus.infrastructure.storage import FileKeyValueStore, InMemoryKeyValueStore


class FailingStorage(InMemoryKeyValueStore):
    def set(self, key: str, value: str) -> None:
        raise OSError("quota exceeded")


@pytest.fixture()
def storage():
    return InMemoryKeyValueStore()


@pytest.fixture()
def store(storage):
    return OverrideStore("ws-1", storage)


def _persisted(storage, key="overtime_overrides_ws-1"):
    return json.loads(storage.get(key))


@pytest.mark.parametrize("value", [float("nan"), float("inf"), -1, "-0.5", "abc", True])
def test_capacity_rejects_invalid_numbers(store, value):
    assert store.update_override("u1", "capacity", value) is False
    assert store.get_override("u1") is None


def test_multiplier_must_be_at_least_one(store):
    assert store.update_override("u1", "multiplier", "0.5") is False
    assert store.update_override("u1", "multiplier", "1") is True
    assert store.get_override("u1").multiplier == Decimal("1")


def test_zero_capacity_is_accepted_and_persisted(store, storage):
    assert store.update_override("u1", "capacity", 0) is True
    record = store.get_override("u1")
    assert record.mode is OverrideMode.GLOBAL
    assert record.capacity == Decimal("0")
    assert _persisted(storage)["u1"] == {"mode": "global", "capacity": "0"}


def test_per_day_update_without_record_creates_per_day_record(store, storage):
    assert store.update_per_day_override("u1", "2024-03-04", "capacity", "6") is True
    record = store.get_override("u1")
    assert record.mode is OverrideMode.PER_DAY
    assert record.per_day_overrides["2024-03-04"].capacity == Decimal("6")
    assert _persisted(storage)["u1"]["per_day_overrides"] == {"2024-03-04": {"capacity": "6"}}


def test_per_day_update_switches_global_record(store):
    store.update_override("u1", "capacity", 7)
    store.update_per_day_override("u1", "2024-03-05", "is_working_day", False)
    record = store.get_override("u1")
    assert record.mode is OverrideMode.PER_DAY
    assert record.capacity == Decimal("7")
    assert record.per_day_overrides["2024-03-05"].is_working_day is False


def test_per_day_update_rejects_bad_date_and_field(store):
    assert store.update_per_day_override("u1", "03/04/2024", "capacity", 6) is False
    assert store.update_per_day_override("u1", "2024-03-04", "working_days", ["MONDAY"]) is False
    assert store.get_override("u1") is None


def test_clearing_the_only_day_value_removes_the_day(store):
    store.update_per_day_override("u1", "2024-03-04", "capacity", "6")
    store.update_per_day_override("u1", "2024-03-04", "capacity", "")
    assert store.get_override("u1").per_day_overrides == {}


def test_invalid_mode_is_rejected(store):
    assert store.set_override_mode("u1", "weekly") is False
    assert store.get_override("u1") is None


def test_mode_none_deletes_record(store, storage):
    store.update_override("u1", "capacity", 6)
    assert store.set_override_mode("u1", "none") is True
    assert store.get_override("u1") is None
    assert _persisted(storage) == {}


def test_leaving_per_day_mode_drops_day_values(store):
    store.update_per_day_override("u1", "2024-03-04", "capacity", "6")
    store.set_override_mode("u1", "global")
    record = store.get_override("u1")
    assert record.mode is OverrideMode.GLOBAL
    assert record.per_day_overrides == {}
    assert record.day("2024-03-04") is None


def test_copy_global_to_per_day(store):
    store.update_override("u1", "capacity", 6)
    store.update_override("u1", "multiplier", 2)
    store.update_override("u1", "working_days", ["monday", "tuesday"])
    assert store.copy_global_to_per_day("u1", ["2024-03-04", "2024-03-06"]) is True

    record = store.get_override("u1")
    assert record.mode is OverrideMode.PER_DAY
    monday = record.per_day_overrides["2024-03-04"]
    wednesday = record.per_day_overrides["2024-03-06"]
    assert monday.capacity == Decimal("6")
    assert monday.multiplier == Decimal("2")
    assert monday.is_working_day is True
    assert wednesday.is_working_day is False


def test_copy_global_without_record_fails(store):
    assert store.copy_global_to_per_day("ghost", ["2024-03-04"]) is False


def test_unknown_working_day_is_rejected(store):
    assert store.update_override("u1", "working_days", ["MONDAY", "FUNDAY"]) is False


def test_reload_restores_records(storage):
    first = OverrideStore("ws-1", storage)
    first.update_override("u1", "tier2_threshold", "4")
    first.update_per_day_override("u2", "2024-03-04", "multiplier", "3")

    second = OverrideStore("ws-1", storage)
    assert second.get_override("u1").tier2_threshold == Decimal("4")
    assert second.get_override("u2").day("2024-03-04").multiplier == Decimal("3")
    assert dict(OverrideStore("ws-2", storage).overrides) == {}


def test_corrupted_json_loads_empty(storage):
    storage.set("overtime_overrides_ws-1", "{not json")
    storage.set("otplus_config_ws-1", "[]")
    store = OverrideStore("ws-1", storage)
    assert dict(store.overrides) == {}
    assert store.config.group_by is GroupBy.USER


def test_undecodable_file_loads_empty(tmp_path):
    (tmp_path / "overtime_overrides_ws1.json").write_bytes(b"\xff\xfe\x00garbage")
    (tmp_path / "otplus_config_ws1.json").write_bytes(b"\x80\x81")
    store = OverrideStore("ws1", FileKeyValueStore(tmp_path))
    assert dict(store.overrides) == {}
    assert store.config.group_by is GroupBy.USER
    assert store.update_override("u1", "capacity", 6) is True
    assert OverrideStore("ws1", FileKeyValueStore(tmp_path)).get_override("u1").capacity == Decimal("6")


def test_malformed_records_are_skipped(storage):
    storage.set(
        "overtime_overrides_ws-1",
        json.dumps({"bad": "nope", "odd": {"mode": "sideways"}, "good": {"mode": "global", "capacity": "5"}}),
    )
    store = OverrideStore("ws-1", storage)
    assert list(store.overrides) == ["good"]


def test_save_failure_keeps_in_memory_state():
    store = OverrideStore("ws-1", FailingStorage())
    assert store.update_override("u1", "capacity", 6) is True
    assert store.get_override("u1").capacity == Decimal("6")
    assert store.save() is False


def test_overrides_view_is_read_only(store):
    store.update_override("u1", "capacity", 6)
    with pytest.raises(TypeError):
        store.overrides["u2"] = store.get_override("u1")


def test_update_config_validates_and_persists(store, storage):
    config = store.update_config(group_by="Project", overtime_basis="weekly")
    assert config.group_by is GroupBy.PROJECT
    stored = _persisted(storage, "otplus_config_ws-1")
    assert stored["config"]["overtime_basis"] == "weekly"

    with pytest.raises(ValidationError):
        store.update_config(group_by="galaxy")
    with pytest.raises(ValidationError):
        store.update_config(colour="blue")
    with pytest.raises(ValidationError):
        store.update_config(timezone="Mars/Olympus")
    assert store.config.group_by is GroupBy.PROJECT


def test_update_calc_params_rejects_infinite(store):
    with pytest.raises(ValidationError):
        store.update_calc_params(daily_threshold="Infinity")
    params = store.update_calc_params(daily_threshold="7.5", tier2_threshold_hours=2)
    assert params.daily_threshold == Decimal("7.5")
    assert params.tier2_threshold_hours == Decimal("2")


def test_store_requires_workspace_id(storage):
    with pytest.raises(ValidationError):
        OverrideStore("", storage)


def test_file_storage_round_trip(tmp_path):
    storage = FileKeyValueStore(tmp_path)
    store = OverrideStore("ws/1", storage)
    store.update_override("u1", "capacity", "6.5")
    assert (tmp_path / "overtime_overrides_ws_1.json").exists()
    assert OverrideStore("ws/1", storage).get_override("u1").capacity == Decimal("6.5")
    storage.delete("overtime_overrides_ws/1")
    assert dict(OverrideStore("ws/1", storage).overrides) == {}
