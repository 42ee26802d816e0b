from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from ward_census.bed_zones import DEFAULT_ZONE_RULES, ZoneRule, zone_rule_to_config, zone_rules_from_config
from ward_census.sheets import DEFAULT_ADMITTED_RANGE, DEFAULT_ELECTIVE_RANGE
from ward_census.views import DEFAULT_UNITS, Unit

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = REPO_ROOT / ".env"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ConfigError(Exception):
    """Raised when the ward configuration file is missing or malformed."""


@dataclass
class Settings:
    db_path: Path
    census_source: Path
    admitted_range: str
    elective_range: str
    config_path: Path
    archive_path: Path
    log_level: str = "INFO"
    enable_access_gate: bool = False
    allowed_users: set[str] = field(default_factory=set)


@dataclass
class WardConfig:
    units: list[Unit]
    bed_orders: dict[str, list[ZoneRule]] = field(default_factory=dict)

    def unit(self, unit_id: Any) -> Unit | None:
        for unit in self.units:
            if str(unit.id) == str(unit_id):
                return unit
        return None

    def zone_rules_for_unit(self, unit_id: Any) -> list[ZoneRule]:
        unit_rules = self.bed_orders.get(f"bed_order_{unit_id}")
        if unit_rules:
            return unit_rules
        global_rules = self.bed_orders.get("bed_order")
        if global_rules:
            return global_rules
        return list(DEFAULT_ZONE_RULES)


def load_local_env_file(path: Path = ENV_FILE) -> None:
    """
    Load key=value pairs from a local .env file into process env without overriding
    values that are already present.
    """
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and (key not in os.environ or not os.environ.get(key, "").strip()):
            os.environ[key] = value


def _truthy_env(name: str, default: bool = False) -> bool:
    fallback = "1" if default else "0"
    return os.getenv(name, fallback).strip().lower() in {"1", "true", "yes", "on"}


def _split_emails(raw: str) -> set[str]:
    return {part.strip().lower() for part in str(raw or "").split(",") if part.strip()}


def _env_path(name: str, default: str) -> Path:
    raw = os.getenv(name, "").strip() or default
    path = Path(raw)
    return path if path.is_absolute() else REPO_ROOT / path


def read_settings(env_file: Path = ENV_FILE) -> Settings:
    load_local_env_file(env_file)
    return Settings(
        db_path=_env_path("WARD_DB_PATH", "data/ward_census.db"),
        census_source=_env_path("WARD_CENSUS_SOURCE", "data/census.xlsx"),
        admitted_range=os.getenv("WARD_ADMITTED_RANGE", "").strip() or DEFAULT_ADMITTED_RANGE,
        elective_range=os.getenv("WARD_ELECTIVE_RANGE", "").strip() or DEFAULT_ELECTIVE_RANGE,
        config_path=_env_path("WARD_CONFIG_PATH", "config/ward.yaml"),
        archive_path=_env_path("WARD_ARCHIVE_PATH", "data/archive.json"),
        log_level=os.getenv("WARD_LOG_LEVEL", "").strip().upper() or "INFO",
        enable_access_gate=_truthy_env("ENABLE_ACCESS_GATE", default=False),
        allowed_users=_split_emails(os.getenv("ALLOWED_USERS", "")),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _units_from_config(raw_units: Any) -> list[Unit]:
    if not isinstance(raw_units, list):
        raise ConfigError("`units` must be a list.")
    units: list[Unit] = []
    for raw in raw_units:
        if not isinstance(raw, dict) or "id" not in raw or not raw.get("name"):
            raise ConfigError(f"Unit entries need `id` and `name`: {raw!r}")
        try:
            unit_id = int(raw["id"])
        except (TypeError, ValueError) as error:
            raise ConfigError(f"Unit id must be an integer: {raw['id']!r}") from error
        consultants = tuple(str(name).strip() for name in raw.get("consultants") or [] if str(name).strip())
        units.append(Unit(unit_id, str(raw["name"]).strip(), consultants))
    return units


@lru_cache(maxsize=4)
def load_ward_config(config_path: str) -> WardConfig:
    path = Path(config_path)
    if not path.exists():
        LOGGER.info("Ward config %s not found; using built-in units and bed zones.", path)
        return WardConfig(units=list(DEFAULT_UNITS))

    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as error:
        raise ConfigError(f"Could not read ward config {path}: {error}") from error
    if not isinstance(payload, dict):
        raise ConfigError(f"Ward config {path} must be a mapping.")

    units = _units_from_config(payload["units"]) if "units" in payload else list(DEFAULT_UNITS)
    bed_orders: dict[str, list[ZoneRule]] = {}
    for key, value in payload.items():
        if key == "bed_order" or str(key).startswith("bed_order_"):
            rules = zone_rules_from_config(value)
            if rules:
                bed_orders[str(key)] = rules
            else:
                LOGGER.warning("Ignoring empty bed zone order %s in %s.", key, path)
    return WardConfig(units=units, bed_orders=bed_orders)


def save_zone_order(config_path: str, unit_id: Any, rules: list[ZoneRule]) -> None:
    """Write ``bed_order_<unit_id>`` into the ward config, keeping every other key."""
    if not rules:
        raise ConfigError("A bed zone order needs at least one zone.")

    path = Path(config_path)
    payload: dict[str, Any] = {}
    try:
        if path.exists():
            with path.open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as error:
        raise ConfigError(f"Could not read ward config {path}: {error}") from error
    if not isinstance(payload, dict):
        raise ConfigError(f"Ward config {path} must be a mapping.")

    payload[f"bed_order_{unit_id}"] = [zone_rule_to_config(rule) for rule in rules]
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)
    except OSError as error:
        raise ConfigError(f"Could not write ward config {path}: {error}") from error

    load_ward_config.cache_clear()
    LOGGER.info("Saved %d bed zones for unit %s to %s.", len(rules), unit_id, path)
