"""Preferences loading with defaults and CLI override merging."""

from __future__ import annotations

import copy
from pathlib import Path

import yaml

from household_planner.models import MealSlot
from household_planner.scoring import AntiRepeat, LeftoversOverride, TagQuota

DEFAULT_CONFIG_FILE = "household-planner.yaml"

DEFAULTS = {
    "database": {
        "path": "household-planner.db",
    },
    "household": {
        "id": None,
    },
    "schedule": {
        "plan_days": 7,
        "meal_slots": ["lunch", "dinner"],
    },
    "anti_repeat": {
        "lookback_weeks": 4,
        "base_penalty": 0.5,
        "decay": 0.5,
        "leftovers_override": {
            "enabled": False,
            "min_pantry_coverage_ratio": 0.8,
            "penalty_multiplier_when_covered": 0.2,
        },
    },
    "quotas": {
        "bonus": 0.1,
        # [{tag_id: ..., min: ...}]
        "tags": [],
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path | None = None) -> dict:
    """Load planner preferences from a YAML file, falling back to defaults."""
    path = config_path or Path(DEFAULT_CONFIG_FILE)

    if path.exists():
        with open(path) as f:
            user_config = yaml.safe_load(f) or {}
        return deep_merge(copy.deepcopy(DEFAULTS), user_config)

    return copy.deepcopy(DEFAULTS)


def apply_cli_overrides(config: dict, **overrides: object) -> dict:
    """Apply CLI argument overrides to config.

    Supports flat keys that map into nested config:
      db -> database.path
      household -> household.id
      days -> schedule.plan_days
      meal_slots -> schedule.meal_slots (comma-separated)
      lookback_weeks -> anti_repeat.lookback_weeks
      leftovers -> anti_repeat.leftovers_override.enabled
    """
    if overrides.get("db") is not None:
        config["database"]["path"] = str(overrides["db"])
    if overrides.get("household") is not None:
        config["household"]["id"] = overrides["household"]
    if overrides.get("days") is not None:
        config["schedule"]["plan_days"] = overrides["days"]
    if overrides.get("meal_slots") is not None:
        slots_str = str(overrides["meal_slots"])
        config["schedule"]["meal_slots"] = [s.strip().lower() for s in slots_str.split(",")]
    if overrides.get("lookback_weeks") is not None:
        config["anti_repeat"]["lookback_weeks"] = overrides["lookback_weeks"]
    if overrides.get("leftovers"):
        config["anti_repeat"]["leftovers_override"]["enabled"] = True

    return config


def anti_repeat_from_config(config: dict) -> AntiRepeat:
    section = config["anti_repeat"]
    override = section.get("leftovers_override") or {}
    return AntiRepeat(
        lookback_weeks=int(section["lookback_weeks"]),
        base_penalty=float(section["base_penalty"]),
        decay=float(section["decay"]),
        leftovers_override=LeftoversOverride(
            enabled=bool(override.get("enabled", False)),
            min_pantry_coverage_ratio=float(override.get("min_pantry_coverage_ratio", 0.8)),
            penalty_multiplier_when_covered=float(override.get("penalty_multiplier_when_covered", 0.2)),
        ),
    )


def tag_quotas_from_config(config: dict) -> list[TagQuota]:
    return [TagQuota(tag_id=str(q["tag_id"]), min=int(q["min"])) for q in config["quotas"].get("tags") or []]


def meal_slots_from_config(config: dict) -> list[MealSlot]:
    try:
        return [MealSlot(s) for s in config["schedule"]["meal_slots"]]
    except ValueError as e:
        valid = ", ".join(m.value for m in MealSlot)
        raise ValueError(f"Unknown meal slot in config ({e}). Valid: {valid}")
