from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable

LOGGER = logging.getLogger(__name__)

UNASSIGNED_ZONE = "Unassigned"
FALLBACK_ZONE = "General Ward"


@dataclass(frozen=True)
class ZoneRule:
    name: str
    prefix: str = ""
    match: str = ""
    exclude: tuple[str, ...] = ()
    specific: tuple[str, ...] = ()


DEFAULT_ZONE_RULES: list[ZoneRule] = [
    # Old building
    ZoneRule("5A", prefix="50"),
    ZoneRule("5B", prefix="52", exclude=("527", "528", "529")),
    ZoneRule("5C", specific=("527", "528", "529")),
    ZoneRule("4A (MHCU)", prefix="40"),
    ZoneRule("Cubicle", prefix="41"),
    ZoneRule("Neuro (ASU)", prefix="42"),
    ZoneRule("3A", prefix="30"),
    ZoneRule("3B", prefix="31"),
    ZoneRule("POW", match="POW"),
    ZoneRule("1st Floor", prefix="10"),
    ZoneRule("1st Floor (NICU)", match="NICU"),
    ZoneRule("1st Floor (CAR)", match="CAR"),
    ZoneRule("1st Floor (CCU)", match="CCU"),
    # New building
    ZoneRule("HDU", match="HDU"),
    ZoneRule("ICU", match="ICU"),
    ZoneRule("AW", match="AW"),
    ZoneRule("4th Plus", prefix="24"),
    ZoneRule("5th Plus", prefix="25"),
]


def _normalized_bed(value: Any) -> str:
    return re.sub(r"\s+", " ", str(value or "").strip()).upper()


def _bed_base(bed: str) -> str:
    return bed.split("-", 1)[0].strip()


def _upper_set(values: Iterable[str]) -> set[str]:
    return {str(value).strip().upper() for value in values if str(value).strip()}


def classify_bed(bed_label: Any, zone_rules: Iterable[ZoneRule] | None = None) -> str:
    """Map a bed label to its zone name.

    Exact (``specific``) sets of every rule are checked first so a carved-out
    sub-range beats a broader prefix rule; then substring rules, then prefix
    rules with their exclusions. The room suffix after ``-`` is ignored for the
    exact and exclusion checks only.
    """
    bed = _normalized_bed(bed_label)
    if not bed:
        return UNASSIGNED_ZONE

    rules = list(DEFAULT_ZONE_RULES if zone_rules is None else zone_rules)
    base = _bed_base(bed)

    for rule in rules:
        if base in _upper_set(rule.specific):
            return rule.name

    for rule in rules:
        if rule.match and rule.match.upper() in bed:
            return rule.name

    for rule in rules:
        if rule.prefix and bed.startswith(rule.prefix.upper()):
            if base in _upper_set(rule.exclude):
                continue
            return rule.name

    return FALLBACK_ZONE


def _string_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(item).strip() for item in value if str(item).strip())


def zone_rules_from_config(raw_rules: Any) -> list[ZoneRule]:
    if not isinstance(raw_rules, list):
        return []

    rules: list[ZoneRule] = []
    for index, raw in enumerate(raw_rules):
        if not isinstance(raw, dict):
            LOGGER.warning("Skipping bed zone rule %d: expected a mapping.", index)
            continue
        name = str(raw.get("name", "") or "").strip()
        if not name:
            LOGGER.warning("Skipping bed zone rule %d: missing name.", index)
            continue
        rules.append(
            ZoneRule(
                name=name,
                prefix=str(raw.get("prefix", "") or "").strip(),
                match=str(raw.get("match", "") or "").strip(),
                exclude=_string_tuple(raw.get("exclude")),
                specific=_string_tuple(raw.get("specific")),
            )
        )
    return rules


def zone_rule_to_config(rule: ZoneRule) -> dict[str, Any]:
    payload: dict[str, Any] = {"name": rule.name}
    if rule.prefix:
        payload["prefix"] = rule.prefix
    if rule.match:
        payload["match"] = rule.match
    if rule.exclude:
        payload["exclude"] = list(rule.exclude)
    if rule.specific:
        payload["specific"] = list(rule.specific)
    return payload


def zone_order(zone_rules: Iterable[ZoneRule]) -> list[str]:
    names: list[str] = []
    for rule in zone_rules:
        if rule.name not in names:
            names.append(rule.name)
    return names


def bed_sort_key(bed_label: Any) -> tuple[tuple[int, int | str], ...]:
    bed = _normalized_bed(bed_label)
    if not bed:
        return ((2, ""),)
    parts: list[tuple[int, int | str]] = []
    for chunk in re.findall(r"\d+|\D+", bed):
        if chunk.isdigit():
            parts.append((0, int(chunk)))
        else:
            parts.append((1, chunk))
    return tuple(parts)
