from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import yaml

from otplus.core.schema import CalcParams, OvertimeConfig

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


@lru_cache(maxsize=1)
def _load_defaults() -> dict:
    path = CONFIG_DIR / "overtime_defaults.yaml"
    if not path.exists():
        return {"calc_params": {}, "config": {}}
    with path.open("r", encoding="utf-8") as fp:
        return yaml.safe_load(fp) or {}


def default_config() -> OvertimeConfig:
    return OvertimeConfig.model_validate(_load_defaults().get("config") or {})


def default_calc_params() -> CalcParams:
    return CalcParams.model_validate(_load_defaults().get("calc_params") or {})
