from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Protocol

import pandas as pd

from ward_census.records import ADMITTED, ELECTIVE, CensusRecord, clean_cell

LOGGER = logging.getLogger(__name__)

DEFAULT_ADMITTED_RANGE = "Scraped!A:I"
DEFAULT_ELECTIVE_RANGE = "SportsPreop!A:Z"


class SourceUnavailableError(Exception):
    """Raised when the census spreadsheet cannot be read."""


class SpreadsheetSource(Protocol):
    def read(self, range_spec: str) -> list[dict[str, Any]]:
        ...


@dataclass(frozen=True)
class FieldRule:
    field: str
    candidates: tuple[str, ...]
    position: int | None = None


# Positions follow the admitted sheet's historical A:I column order.
CENSUS_FIELD_RULES: list[FieldRule] = [
    FieldRule("ip_date", ("ip-date", "ip date", "date"), position=0),
    FieldRule("hospital_no", ("hospital no", "mrn"), position=1),
    FieldRule("in_pat_no", ("inpat no", "inpatient"), position=2),
    FieldRule("name", ("patient name", "name", "patient"), position=3),
    FieldRule("department", ("department", "dept"), position=4),
    FieldRule("consultant", ("consultant", "surgeon"), position=5),
    FieldRule("mobile", ("contact", "mobile", "phone"), position=6),
    FieldRule("age_gender", ("age/gender",), position=7),
    FieldRule("bed_no", ("bed no", "bed"), position=8),
    FieldRule("diagnosis", ("diagnosis",)),
    FieldRule("procedure", ("procedure", "surgery")),
    FieldRule("npo_status", ("npo status", "npo", "remark", "instruction")),
]

AGE_CANDIDATES = ("age",)
SEX_CANDIDATES = ("sex", "gender")


def normalize_header(text: Any) -> str:
    return re.sub(r"\s+", " ", str(text or "").strip().lower())


def _match_candidate(row: dict[str, Any], candidate: str) -> str | None:
    needle = normalize_header(candidate)
    for header, value in row.items():
        if needle in normalize_header(header):
            return clean_cell(value)
    return None


def _first_match(row: dict[str, Any], candidates: Iterable[str]) -> str:
    for candidate in candidates:
        value = _match_candidate(row, candidate)
        if value:
            return value
    return ""


def _positional_value(row: dict[str, Any], position: int | None) -> str:
    if position is None:
        return ""
    values = list(row.values())
    if position >= len(values):
        return ""
    return clean_cell(values[position])


def _headers_match(row: dict[str, Any], candidates: Iterable[str]) -> bool:
    return any(_match_candidate(row, candidate) is not None for candidate in candidates)


def resolve_field(row: dict[str, Any], rule: FieldRule, positional: bool = False) -> str:
    value = _first_match(row, rule.candidates)
    if value:
        return value
    if positional and not _headers_match(row, rule.candidates):
        return _positional_value(row, rule.position)
    return ""


def _age_gender(row: dict[str, Any], rule: FieldRule, positional: bool) -> str:
    combined = _first_match(row, rule.candidates)
    if combined:
        return combined
    age = _first_match(row, AGE_CANDIDATES)
    if age:
        sex = _first_match(row, SEX_CANDIDATES)
        return f"{age}/{sex}" if sex else age
    return resolve_field(row, rule, positional)


def census_record_from_row(row: dict[str, Any], status: str = ADMITTED, positional: bool = False) -> CensusRecord | None:
    values: dict[str, str] = {}
    for rule in CENSUS_FIELD_RULES:
        if rule.field == "age_gender":
            values[rule.field] = _age_gender(row, rule, positional)
        else:
            values[rule.field] = resolve_field(row, rule, positional)

    if not values["hospital_no"]:
        return None
    return CensusRecord(status=ELECTIVE if status == ELECTIVE else ADMITTED, **values)


def census_records_from_rows(
    rows: Iterable[dict[str, Any]],
    status: str = ADMITTED,
    positional: bool = False,
) -> list[CensusRecord]:
    records: list[CensusRecord] = []
    skipped = 0
    for row in rows:
        record = census_record_from_row(row, status, positional)
        if record is None:
            if any(clean_cell(value) for value in row.values()):
                skipped += 1
            continue
        records.append(record)
    if skipped:
        LOGGER.warning("Skipped %d %s census rows without hospital number.", skipped, status)
    LOGGER.info("Census rows parsed (%s): %d", status, len(records))
    return records


def _split_range(range_spec: str) -> tuple[str, str]:
    sheet, _, columns = str(range_spec or "").partition("!")
    return sheet.strip(), columns.strip().upper()


def _column_index(letters: str) -> int:
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def _slice_columns(frame: pd.DataFrame, columns: str) -> pd.DataFrame:
    match = re.fullmatch(r"([A-Z]+):([A-Z]+)", columns)
    if not match:
        return frame
    start, end = (_column_index(group) for group in match.groups())
    return frame.iloc[:, start : end + 1]


class WorkbookSource:
    """Census workbook (``.xlsx``) or a directory of ``<Sheet>.csv`` exports."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def read(self, range_spec: str) -> list[dict[str, Any]]:
        sheet, columns = _split_range(range_spec)
        if not sheet:
            raise SourceUnavailableError(f"Range {range_spec!r} does not name a sheet.")
        try:
            if self.path.is_dir():
                frame = pd.read_csv(self.path / f"{sheet}.csv", dtype=str, keep_default_na=False)
                frame = _slice_columns(frame, columns)
            else:
                frame = pd.read_excel(
                    self.path,
                    sheet_name=sheet,
                    dtype=str,
                    keep_default_na=False,
                    usecols=columns or None,
                )
        except (OSError, ValueError, KeyError, ImportError) as error:
            raise SourceUnavailableError(f"Could not read {range_spec} from {self.path}: {error}") from error

        frame.columns = [str(column).strip() for column in frame.columns]
        return frame.to_dict(orient="records")


def load_census(
    source: SpreadsheetSource,
    admitted_range: str = DEFAULT_ADMITTED_RANGE,
    elective_range: str = DEFAULT_ELECTIVE_RANGE,
) -> list[CensusRecord]:
    admitted = census_records_from_rows(source.read(admitted_range), ADMITTED, positional=True)
    elective = census_records_from_rows(source.read(elective_range), ELECTIVE)
    return admitted + elective
