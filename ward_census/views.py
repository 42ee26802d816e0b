from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Iterable

from ward_census.bed_zones import (
    DEFAULT_ZONE_RULES,
    ZoneRule,
    bed_sort_key,
    classify_bed,
    zone_order,
)
from ward_census.dates import date_sort_key, days_between, normalize_date
from ward_census.records import DISCHARGED, ELECTIVE, MergedPatient

ELECTIVE_LOOKBACK_DAYS = 7
UNKNOWN_DATE_LABEL = "Unknown Date"


@dataclass(frozen=True)
class Unit:
    id: int
    name: str
    consultants: tuple[str, ...]


DEFAULT_UNITS: list[Unit] = [
    Unit(
        1,
        "Hip Pelvis Acetabulum",
        (
            "Prof. Dr. Ashok Kumar Banskota",
            "Dr. Bibek Banskota",
            "Dr. Ansul Rajbhandari",
            "Dr. Rajendra Aryal",
            "Dr. Birendra Bahadur Chand",
            "Dr. Nitesh Raj Pandey",
        ),
    ),
    Unit(
        2,
        "Spine",
        (
            "Dr. Babu Kaji Shrestha",
            "Dr. Ram Krishna Barakoti",
            "Dr. Rajesh Kumar Chaudhary",
            "Dr. Deepak Kaucha",
        ),
    ),
    Unit(3, "Trauma", ("Dr. Saroj Rijal", "Dr. Ishor Pradhan", "Dr. Subhash Regmi")),
    Unit(
        5,
        "Sports",
        (
            "Prof. Dr. Amit Joshi",
            "Dr. Nagmani Singh",
            "Dr. Bibek Basukala",
            "Dr. Rohit Bista",
            "Dr. Rajiv Sharma",
        ),
    ),
    Unit(6, "Hand", ("Dr. Om Prasad Shrestha", "Dr. Niresh Shrestha", "Dr. Santosh Batajoo")),
]


class ViewKind(Enum):
    UNIT = "unit"
    BED_ZONES = "bed_zones"
    CONSULTANTS = "consultants"
    ADMISSION_DATE = "admission_date"
    ELECTIVE = "elective"
    ELECTIVE_BY_DATE = "elective_by_date"
    CALENDAR = "calendar"


@dataclass
class ViewSpec:
    kind: ViewKind
    unit: Unit | None = None
    zone_rules: list[ZoneRule] = field(default_factory=lambda: list(DEFAULT_ZONE_RULES))
    today: date | None = None
    sort: str | None = None


@dataclass
class PatientGroup:
    label: str
    patients: list[MergedPatient]


@dataclass
class ProjectedView:
    kind: ViewKind
    groups: list[PatientGroup] = field(default_factory=list)

    @property
    def patients(self) -> list[MergedPatient]:
        return [patient for group in self.groups for patient in group.patients]

    @property
    def count(self) -> int:
        return sum(len(group.patients) for group in self.groups)


def _is_active(patient: MergedPatient) -> bool:
    return patient.status not in (DISCHARGED, ELECTIVE)


def _matches_consultant(patient: MergedPatient, consultant: str) -> bool:
    needle = consultant.strip().lower()
    return bool(needle) and needle in (patient.consultant or "").lower()


def filter_unit(patients: Iterable[MergedPatient], unit: Unit) -> list[MergedPatient]:
    return [
        patient
        for patient in patients
        if _is_active(patient)
        and any(_matches_consultant(patient, consultant) for consultant in unit.consultants)
    ]


def unit_census_count(patients: Iterable[MergedPatient], unit: Unit) -> int:
    return len(filter_unit(patients, unit))


def group_by_bed_zone(
    patients: Iterable[MergedPatient],
    unit: Unit,
    zone_rules: Iterable[ZoneRule] | None = None,
) -> list[PatientGroup]:
    rules = list(DEFAULT_ZONE_RULES if zone_rules is None else zone_rules)
    grouped: dict[str, list[MergedPatient]] = {}
    for patient in filter_unit(patients, unit):
        if patient.is_ghost:
            continue
        grouped.setdefault(classify_bed(patient.bed_no, rules), []).append(patient)

    configured = zone_order(rules)
    names = configured + [name for name in grouped if name not in configured]
    return [
        PatientGroup(name, sorted(grouped[name], key=lambda patient: bed_sort_key(patient.bed_no)))
        for name in names
        if grouped.get(name)
    ]


_CONSULTANT_SORTS: dict[str, Callable[[MergedPatient], Any]] = {
    "bed": lambda patient: bed_sort_key(patient.bed_no),
    "admission_date": lambda patient: date_sort_key(patient.ip_date),
    "name": lambda patient: (patient.name or "").lower(),
}


def group_by_consultant(
    patients: Iterable[MergedPatient],
    unit: Unit,
    sort: str | None = None,
) -> list[PatientGroup]:
    if sort is not None and sort not in _CONSULTANT_SORTS:
        raise ValueError(f"Unknown consultant sort: {sort}")

    in_unit = filter_unit(patients, unit)
    groups: list[PatientGroup] = []
    for consultant in unit.consultants:
        members = [patient for patient in in_unit if _matches_consultant(patient, consultant)]
        if not members:
            continue
        if sort is not None:
            members = sorted(members, key=_CONSULTANT_SORTS[sort])
        groups.append(PatientGroup(consultant, members))
    return groups


def order_by_admission_date(patients: Iterable[MergedPatient]) -> list[MergedPatient]:
    dated: list[tuple[tuple[int, int, int], MergedPatient]] = []
    undated: list[MergedPatient] = []
    for patient in patients:
        if not _is_active(patient):
            continue
        canonical = normalize_date(patient.ip_date)
        if canonical is None:
            undated.append(patient)
        else:
            dated.append((canonical.sort_key, patient))
    dated.sort(key=lambda item: item[0], reverse=True)
    return [patient for _key, patient in dated] + undated


def _elective_tier(diff: int) -> tuple[int, int]:
    if diff > 0:
        return (0, diff)
    if diff == 0:
        return (1, 0)
    return (2, -diff)


def elective_window(
    patients: Iterable[MergedPatient],
    today: date,
    sort: str | None = None,
) -> list[MergedPatient]:
    """Elective cases from a week ago onwards.

    Upcoming cases first (soonest first), then today's, then the past week
    (most recent first). ``sort="consultant"`` orders ties by consultant.
    """
    if sort not in (None, "consultant"):
        raise ValueError(f"Unknown elective sort: {sort}")

    kept: list[tuple[tuple[int, int], MergedPatient]] = []
    for patient in patients:
        if patient.status != ELECTIVE:
            continue
        diff = days_between(patient.ip_date, today)
        if diff is None or diff < -ELECTIVE_LOOKBACK_DAYS:
            continue
        kept.append((_elective_tier(diff), patient))

    if sort == "consultant":
        kept.sort(key=lambda item: (item[0], (item[1].consultant or "").lower()))
    else:
        kept.sort(key=lambda item: item[0])
    return [patient for _tier, patient in kept]


def group_electives_by_date(
    patients: Iterable[MergedPatient],
    today: date,
    descending: bool = False,
) -> list[PatientGroup]:
    groups: dict[str, list[MergedPatient]] = {}
    for patient in elective_window(patients, today):
        # The window only keeps parseable Gregorian dates.
        label = normalize_date(patient.ip_date).iso
        groups.setdefault(label, []).append(patient)

    result: list[PatientGroup] = []
    for label, members in groups.items():
        members = sorted(members, key=lambda patient: (patient.consultant or "").lower(), reverse=descending)
        result.append(PatientGroup(label, members))
    return result


def group_by_admission_date(patients: Iterable[MergedPatient]) -> list[PatientGroup]:
    groups: dict[str, list[MergedPatient]] = {}
    for patient in patients:
        raw = (patient.ip_date or "").strip()
        canonical = normalize_date(raw)
        label = canonical.iso if canonical is not None else raw or UNKNOWN_DATE_LABEL
        groups.setdefault(label, []).append(patient)

    def _label_key(label: str) -> tuple[int, tuple[int, int, int]]:
        if label == UNKNOWN_DATE_LABEL:
            return (2, (0, 0, 0))
        canonical = normalize_date(label)
        if canonical is None:
            return (1, (0, 0, 0))
        year, month, day = canonical.sort_key
        return (0, (-year, -month, -day))

    return [PatientGroup(label, groups[label]) for label in sorted(groups, key=_label_key)]


def project(patients: Iterable[MergedPatient], spec: ViewSpec) -> ProjectedView:
    items = list(patients)
    kind = spec.kind
    if kind in (ViewKind.UNIT, ViewKind.BED_ZONES, ViewKind.CONSULTANTS) and spec.unit is None:
        raise ValueError(f"{kind.value} view requires a unit")
    if kind in (ViewKind.ELECTIVE, ViewKind.ELECTIVE_BY_DATE) and spec.today is None:
        raise ValueError(f"{kind.value} view requires today's date")

    if kind is ViewKind.UNIT:
        return ProjectedView(kind, _single_group(filter_unit(items, spec.unit)))
    if kind is ViewKind.BED_ZONES:
        return ProjectedView(kind, group_by_bed_zone(items, spec.unit, spec.zone_rules))
    if kind is ViewKind.CONSULTANTS:
        return ProjectedView(kind, group_by_consultant(items, spec.unit, spec.sort))
    if kind is ViewKind.ADMISSION_DATE:
        return ProjectedView(kind, _single_group(order_by_admission_date(items)))
    if kind is ViewKind.ELECTIVE:
        return ProjectedView(kind, _single_group(elective_window(items, spec.today, spec.sort)))
    if kind is ViewKind.ELECTIVE_BY_DATE:
        return ProjectedView(kind, group_electives_by_date(items, spec.today, spec.sort == "consultant_desc"))
    if kind is ViewKind.CALENDAR:
        active = [patient for patient in items if _is_active(patient)]
        return ProjectedView(kind, group_by_admission_date(active))
    raise ValueError(f"Unsupported view: {kind}")


def _single_group(patients: list[MergedPatient]) -> list[PatientGroup]:
    return [PatientGroup("", patients)] if patients else []
