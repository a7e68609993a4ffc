"""
Era adapters: raw CDE enrollment tables -> WideEnrollmentRow lists.

CDE has published enrollment in five incompatible layouts:

    Era                Years      Race codes        Names                    Aggregates
    letter_codes       1982-1993  A,B,C,F,H,...     district, school         none
    numeric_1_8        1994-2007  1-8               none                     none
    numeric_0_9        2008-2014  0-9               county, district, school none
    numeric_0_9_typed  2015-2023  0-9 (+ENR_TYPE)   county, district, school none
    census_day         2024+      TA/RE_/GN_/SG_    county, district, school T/C/D/S

Each adapter owns an explicit ColumnContract (logical field -> accepted
header spellings, first match wins) and declares which fields it can never
populate. Historical adapters return school rows only; the normalizer
synthesizes the aggregates.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from caschooldata.exceptions import MalformedIdentifierError, MissingColumnError, UnsupportedYearError
from caschooldata.processing.aggregator import CountAccumulator
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.records import (
    CHARTER_ALL,
    CHARTER_NO,
    CHARTER_YES,
    GRADE_LABELS,
    WideEnrollmentRow,
)
from caschooldata.processing.reporting_categories import (
    GENDER_UNMAPPED,
    RACE_UNMAPPED,
    TOTAL_CATEGORY,
    get_code_map,
)
from caschooldata.processing.suppression import parse_count
from caschooldata.utilities.cds_codes import (
    STATE_CDS_CODE,
    ZERO_DISTRICT,
    ZERO_SCHOOL,
    AggregationLevel,
    classify,
    compose,
    decompose,
)
from caschooldata.utilities.common import load_settings, raw_table_from_rows

logger = logging.getLogger(__name__)

RawTable = Union[pd.DataFrame, Sequence[Sequence[str]]]

# =============================================================================
# COLUMN CONTRACTS
# =============================================================================


def normalize_header(header) -> str:
    """Canonical form for header matching: upper case, runs of space/_/. -> '_'."""
    return re.sub(r"[\s_.]+", "_", str(header).strip()).upper()


@dataclass(frozen=True)
class ColumnSpec:
    field: str
    spellings: Tuple[str, ...]
    required: bool = True


class ColumnContract:
    """
    Ordered (logical field -> accepted spellings) contract for one era.

    Spellings are normalized once at construction. For each field the
    spellings are tried in order and the first one present in the table
    wins, so resolution is deterministic for a given header row.
    """

    def __init__(self, specs: Sequence[ColumnSpec], era: str = ""):
        self.specs = tuple(specs)
        self.era = era
        self._compiled = tuple(
            (spec, tuple(normalize_header(s) for s in spec.spellings)) for spec in self.specs
        )

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(spec.field for spec in self.specs)

    def resolve(self, columns: Iterable) -> Dict[str, Optional[str]]:
        """
        Map each logical field to the actual header that satisfies it.

        Args:
            columns: Raw header row

        Returns:
            {field: header or None (optional field not present)}

        Raises:
            MissingColumnError: If a required field matches no spelling
        """
        by_normal: Dict[str, str] = {}
        for column in columns:
            by_normal.setdefault(normalize_header(column), column)

        resolved: Dict[str, Optional[str]] = {}
        for spec, normals in self._compiled:
            match = next((by_normal[n] for n in normals if n in by_normal), None)
            if match is None and spec.required:
                raise MissingColumnError(spec.field, spec.spellings, self.era)
            resolved[spec.field] = match
        return resolved


def grade_specs(spellings_by_label: Mapping[str, Sequence[str]], required: bool = True) -> List[ColumnSpec]:
    return [ColumnSpec(label, tuple(spellings), required) for label, spellings in spellings_by_label.items()]


def as_raw_frame(raw_table: RawTable) -> pd.DataFrame:
    """
    Accept a DataFrame of string cells, or rows whose first row is the header.
    """
    if isinstance(raw_table, pd.DataFrame):
        return raw_table
    rows = [list(row) for row in raw_table]
    if not rows:
        return pd.DataFrame()
    return raw_table_from_rows(rows[0], rows[1:])


def _cell(record: Mapping[str, object], column: Optional[str]) -> str:
    if column is None:
        return ""
    value = record.get(column)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def _name(record: Mapping[str, object], column: Optional[str]) -> Optional[str]:
    text = _cell(record, column)
    return text or None


# =============================================================================
# BASE ADAPTER
# =============================================================================


class EraAdapter(ABC):
    """
    Common contract of all era adapters.

    Attributes:
        name: Era identifier
        first_year, last_year: Inclusive end_year range
        native_aggregates: True when the source has state/county/district rows
        unavailable_fields: Fields this era never populates (names,
            charter_status, grade labels)
        grade_labels: Grade labels this era reports
        contract: Raw column contract
    """
    name: str = ""
    native_aggregates: bool = False
    unavailable_fields: FrozenSet[str] = frozenset()
    grade_labels: Tuple[str, ...] = ()

    def __init__(self, first_year: int, last_year: int):
        self.first_year = first_year
        self.last_year = last_year
        self.contract = ColumnContract(self.column_specs(), era=self.name)

    @abstractmethod
    def column_specs(self) -> List[ColumnSpec]:
        ...

    @abstractmethod
    def adapt(
        self,
        raw_table: RawTable,
        year: int,
        report: Optional[QualityReport] = None,
    ) -> List[WideEnrollmentRow]:
        ...

    def covers(self, year: int) -> bool:
        return self.first_year <= year <= self.last_year

    @property
    def years(self) -> range:
        return range(self.first_year, self.last_year + 1)

    def populates(self, field: str) -> bool:
        return field not in self.unavailable_fields

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(name='{self.name}', years={self.first_year}-{self.last_year})>"


# =============================================================================
# HISTORICAL ERAS (1982-2023)
# =============================================================================

HISTORICAL_GRADE_LABELS = GRADE_LABELS[1:]  # no transitional kindergarten

HISTORICAL_GRADE_SPELLINGS: Dict[str, Tuple[str, ...]] = {"K": ("GR_KN", "KDGN", "GR_K")}
HISTORICAL_GRADE_SPELLINGS.update({
    f"{g:02d}": (f"GR_{g}", f"GR_{g:02d}") for g in range(1, 13)
})


def historical_year_label(end_year: int) -> str:
    """
    ACADEMIC_YEAR label used inside historical files.

    Examples:
        >>> historical_year_label(1985)
        '8485'
        >>> historical_year_label(1994)
        '1993-94'
    """
    if end_year <= 1993:
        return f"{(end_year - 1) % 100:02d}{end_year % 100:02d}"
    return f"{end_year - 1}-{end_year % 100:02d}"


class HistoricalEraAdapter(EraAdapter):
    """
    School files with one raw row per (school, race code, gender code).

    Each school is collapsed into a TA row (all raw rows), one RE_* row per
    mapped race category, and one GN_* row per gender. Race or gender codes
    outside the era's vocabulary are counted under RE_UNMAPPED/GN_UNMAPPED.
    """
    native_aggregates = False
    grade_labels = HISTORICAL_GRADE_LABELS
    vocabulary: str = ""
    record_type_filter: Optional[str] = None
    name_spellings: Dict[str, Tuple[str, ...]] = {}

    def column_specs(self) -> List[ColumnSpec]:
        specs = [
            ColumnSpec("cds_code", ("CDS_CODE", "CDS")),
            ColumnSpec("race", ("RACE_ETHNICITY", "ETHNIC", "RACE")),
            ColumnSpec("gender", ("GENDER", "SEX")),
            ColumnSpec("total", ("ENR_TOTAL", "TOTAL_ENR", "ENR")),
            ColumnSpec("academic_year", ("ACADEMIC_YEAR", "YEAR"), required=False),
        ]
        if self.record_type_filter is not None:
            specs.append(ColumnSpec("record_type", ("ENR_TYPE",), required=False))
        for field, spellings in self.name_spellings.items():
            specs.append(ColumnSpec(field, spellings, required=False))
        specs.extend(grade_specs(HISTORICAL_GRADE_SPELLINGS))
        return specs

    def _select_rows(self, frame: pd.DataFrame, columns: Dict[str, Optional[str]], year: int) -> pd.DataFrame:
        record_type_col = columns.get("record_type")
        if record_type_col is not None:
            before = len(frame)
            frame = frame[frame[record_type_col].astype(str).str.strip() == self.record_type_filter]
            logger.debug(
                f"{year}: kept {len(frame):,} of {before:,} rows with "
                f"ENR_TYPE == '{self.record_type_filter}'"
            )

        year_col = columns.get("academic_year")
        if year_col is not None and len(frame):
            labels = frame[year_col].astype(str).str.strip()
            distinct = set(labels) - {""}
            if len(distinct) > 1:
                target = historical_year_label(year)
                frame = frame[labels == target]
                logger.debug(f"{year}: file bundles {len(distinct)} years; kept {len(frame):,} rows for {target}")
        return frame

    def adapt(
        self,
        raw_table: RawTable,
        year: int,
        report: Optional[QualityReport] = None,
    ) -> List[WideEnrollmentRow]:
        """
        Collapse raw (school, race, gender) rows into per-school wide rows.

        Args:
            raw_table: Raw table of string cells
            year: School year end
            report: QualityReport for row/value-level problems

        Returns:
            School-level WideEnrollmentRow list

        Raises:
            MissingColumnError: If a mandatory column is absent
        """
        code_map = get_code_map()
        race_map = code_map.race_vocabulary(self.vocabulary)
        gender_map = code_map.gender_codes
        report = report if report is not None else QualityReport(year)

        frame = as_raw_frame(raw_table)
        columns = self.contract.resolve(frame.columns)
        frame = self._select_rows(frame, columns, year)

        schools: "OrderedDict[str, Dict[str, object]]" = OrderedDict()
        dropped = 0

        for record in frame.to_dict("records"):
            raw_code = _cell(record, columns["cds_code"])
            try:
                cds = decompose(raw_code)
            except MalformedIdentifierError as e:
                dropped += 1
                report.add_once(
                    ("malformed", raw_code),
                    WarningCode.MALFORMED_IDENTIFIER,
                    f"Dropped row: {e.reason}",
                    detail=raw_code,
                )
                continue

            cds_code = cds.code
            if classify(cds) != AggregationLevel.SCHOOL:
                dropped += 1
                report.add_once(
                    ("level", cds_code),
                    WarningCode.AGGREGATION_LEVEL_MISMATCH,
                    f"Dropped {classify(cds).label}-level code in a school-level file",
                    cds_code=cds_code,
                )
                continue

            total = parse_count(record.get(columns["total"]), report, cds_code, "ENR_TOTAL")
            grades = {
                label: parse_count(record.get(columns[label]), report, cds_code, label)
                for label in self.grade_labels
            }

            race_raw = _cell(record, columns["race"]).upper()
            race_category = race_map.get(race_raw)
            if race_category is None:
                race_category = RACE_UNMAPPED
                report.add_once(
                    ("race", race_raw),
                    WarningCode.UNMAPPED_CODE,
                    f"Race/ethnicity code {race_raw!r} is not in the {self.vocabulary} vocabulary",
                    detail=race_raw,
                )

            gender_raw = _cell(record, columns["gender"]).upper()
            gender_category = gender_map.get(gender_raw)
            if gender_category is None:
                gender_category = GENDER_UNMAPPED
                report.add_once(
                    ("gender", gender_raw),
                    WarningCode.UNMAPPED_CODE,
                    f"Gender code {gender_raw!r} is not recognized",
                    detail=gender_raw,
                )

            school = schools.get(cds_code)
            if school is None:
                school = {
                    "names": {field: _name(record, columns.get(field)) for field in self.name_spellings},
                    "categories": {},
                }
                schools[cds_code] = school

            categories: Dict[str, CountAccumulator] = school["categories"]
            for category in (TOTAL_CATEGORY, race_category, gender_category):
                if category not in categories:
                    categories[category] = CountAccumulator(self.grade_labels)
                categories[category].add(total, grades)

        rows: List[WideEnrollmentRow] = []
        for cds_code, school in schools.items():
            names = school["names"]
            categories = school["categories"]
            for category in sorted(categories, key=code_map.sort_key):
                total, grades, incomplete = categories[category].build()
                rows.append(WideEnrollmentRow(
                    end_year=year,
                    cds_code=cds_code,
                    agg_level=AggregationLevel.SCHOOL,
                    reporting_category=category,
                    total_enrollment=total,
                    grades=grades,
                    county_name=names.get("county_name"),
                    district_name=names.get("district_name"),
                    school_name=names.get("school_name"),
                    charter_status=None,
                    completeness=incomplete,
                ))

        logger.info(
            f"{year}: {self.name} adapter built {len(rows):,} rows for {len(schools):,} schools"
            + (f" ({dropped:,} raw rows dropped)" if dropped else "")
        )
        return rows


class LetterCodeEra(HistoricalEraAdapter):
    """1982-1993: letter race codes, district and school names, no county name."""
    name = "letter_codes"
    vocabulary = "letter_codes"
    name_spellings = {
        "district_name": ("DISTRICT_NAME", "DISTRICT"),
        "school_name": ("SCHOOL_NAME", "SCHOOL"),
    }
    unavailable_fields = frozenset({"county_name", "charter_status", "TK"})


class NumericOneToEightEra(HistoricalEraAdapter):
    """1994-2007: numeric race codes 1-8, CDS codes only (no names)."""
    name = "numeric_1_8"
    vocabulary = "numeric_1_8"
    name_spellings = {}
    unavailable_fields = frozenset({
        "county_name", "district_name", "school_name", "charter_status", "TK",
    })


_NAMED_ERA_SPELLINGS = {
    "county_name": ("COUNTY", "COUNTY_NAME"),
    "district_name": ("DISTRICT", "DISTRICT_NAME"),
    "school_name": ("SCHOOL", "SCHOOL_NAME"),
}


class NumericZeroToNineEra(HistoricalEraAdapter):
    """2008-2014: numeric race codes 0-9 with entity names."""
    name = "numeric_0_9"
    vocabulary = "numeric_0_9"
    name_spellings = _NAMED_ERA_SPELLINGS
    unavailable_fields = frozenset({"charter_status", "TK"})


class TypedNumericEra(HistoricalEraAdapter):
    """2015-2023: as 2008-2014, plus ENR_TYPE; only combined ('C') records are used."""
    name = "numeric_0_9_typed"
    vocabulary = "numeric_0_9"
    record_type_filter = "C"
    name_spellings = _NAMED_ERA_SPELLINGS
    unavailable_fields = frozenset({"charter_status", "TK"})


# =============================================================================
# MODERN ERA (2024+)
# =============================================================================

MODERN_GRADE_SPELLINGS: Dict[str, Tuple[str, ...]] = {
    "TK": ("GR_TK",),
    "K": ("GR_KN", "GR_K"),
}
MODERN_GRADE_SPELLINGS.update({
    f"{g:02d}": (f"GR_{g:02d}", f"GR_{g}") for g in range(1, 13)
})

_CHARTER_VALUES = {
    "ALL": CHARTER_ALL, "": CHARTER_ALL,
    "Y": CHARTER_YES, "YES": CHARTER_YES,
    "N": CHARTER_NO, "NO": CHARTER_NO,
}


def normalize_charter(value: str) -> str:
    """Charter flag as 'ALL', 'Y' or 'N' (other values are kept upper-cased)."""
    text = str(value).strip().upper()
    return _CHARTER_VALUES.get(text, text)


class CensusDayEra(EraAdapter):
    """
    Census-day files (2024+): one row per entity x charter x reporting
    category, all four aggregation levels present.
    """
    name = "census_day"
    native_aggregates = True
    grade_labels = GRADE_LABELS
    unavailable_fields = frozenset()

    def column_specs(self) -> List[ColumnSpec]:
        specs = [
            ColumnSpec("academic_year", ("Academic Year", "ACADEMIC_YEAR", "AcademicYear"), required=False),
            ColumnSpec("agg_level", ("Aggregate Level", "AGG_LEVEL", "AggregateLevel")),
            ColumnSpec("county_code", ("County Code", "COUNTY_CODE", "CountyCode")),
            ColumnSpec("district_code", ("District Code", "DISTRICT_CODE", "DistrictCode")),
            ColumnSpec("school_code", ("School Code", "SCHOOL_CODE", "SchoolCode")),
            ColumnSpec("county_name", ("County Name", "COUNTY_NAME", "County"), required=False),
            ColumnSpec("district_name", ("District Name", "DISTRICT_NAME", "District"), required=False),
            ColumnSpec("school_name", ("School Name", "SCHOOL_NAME", "School"), required=False),
            ColumnSpec("charter_status", ("Charter", "Charter (Y/N)", "CHARTER"), required=False),
            ColumnSpec("reporting_category", ("Reporting Category", "REPORTING_CATEGORY", "ReportingCategory")),
            ColumnSpec("total", ("TOTAL_ENR", "Total Enrollment", "ENR_TOTAL")),
        ]
        specs.extend(grade_specs(MODERN_GRADE_SPELLINGS))
        return specs

    def _compose_cds(self, level: AggregationLevel, county: str, district: str, school: str) -> str:
        """CDS code for a row, with explicit zero sentinels below its level."""
        if level == AggregationLevel.STATE:
            return STATE_CDS_CODE
        if level == AggregationLevel.COUNTY:
            return compose(county, district or ZERO_DISTRICT, school or ZERO_SCHOOL)
        if level == AggregationLevel.DISTRICT:
            return compose(county, district, school or ZERO_SCHOOL)
        return compose(county, district, school)

    def adapt(
        self,
        raw_table: RawTable,
        year: int,
        report: Optional[QualityReport] = None,
    ) -> List[WideEnrollmentRow]:
        code_map = get_code_map()
        report = report if report is not None else QualityReport(year)

        frame = as_raw_frame(raw_table)
        columns = self.contract.resolve(frame.columns)

        rows: List[WideEnrollmentRow] = []
        dropped = 0
        for record in frame.to_dict("records"):
            county = _cell(record, columns["county_code"])
            district = _cell(record, columns["district_code"])
            school = _cell(record, columns["school_code"])
            letter = _cell(record, columns["agg_level"]).upper()

            try:
                level = AggregationLevel.from_letter(letter)
            except ValueError:
                level = None

            try:
                if level is None:
                    cds_code = compose(county, district, school)
                    level = classify(cds_code)
                else:
                    cds_code = self._compose_cds(level, county, district, school)
            except MalformedIdentifierError as e:
                dropped += 1
                report.add(
                    WarningCode.MALFORMED_IDENTIFIER,
                    f"Dropped row: {e.reason}",
                    detail=f"{county}|{district}|{school}",
                )
                continue

            # A mislabelled row shares its code with the real entity at the
            # other level and would join that entity's percentage groups.
            if classify(cds_code) != level:
                dropped += 1
                report.add_once(
                    ("level", cds_code, level),
                    WarningCode.AGGREGATION_LEVEL_MISMATCH,
                    f"Dropped row: Aggregate Level '{level.value}' does not match code pattern "
                    f"({classify(cds_code).label})",
                    cds_code=cds_code,
                )
                continue

            category = _cell(record, columns["reporting_category"]).upper()
            if not code_map.is_known(category):
                report.add_once(
                    ("category", category),
                    WarningCode.UNMAPPED_CODE,
                    f"Reporting category {category!r} is not in the code map",
                    detail=category,
                )

            charter_col = columns.get("charter_status")
            charter = normalize_charter(_cell(record, charter_col)) if charter_col else CHARTER_ALL

            total = parse_count(record.get(columns["total"]), report, cds_code, "TOTAL_ENR")
            grades = tuple(
                (label, parse_count(record.get(columns[label]), report, cds_code, label))
                for label in self.grade_labels
            )

            rows.append(WideEnrollmentRow(
                end_year=year,
                cds_code=cds_code,
                agg_level=level,
                reporting_category=category,
                total_enrollment=total,
                grades=grades,
                county_name=_name(record, columns.get("county_name")),
                district_name=_name(record, columns.get("district_name")),
                school_name=_name(record, columns.get("school_name")),
                charter_status=charter,
            ))

        logger.info(
            f"{year}: {self.name} adapter built {len(rows):,} rows"
            + (f" ({dropped:,} rows dropped)" if dropped else "")
        )
        return rows


# =============================================================================
# ERA REGISTRY
# =============================================================================


def build_eras(last_year: Optional[int] = None) -> Tuple[EraAdapter, ...]:
    """
    The five enrollment eras in year order.

    Args:
        last_year: Last supported census-day year (default: settings)
    """
    if last_year is None:
        last_year = int(load_settings()["years"]["enrollment"]["max"])
    return (
        LetterCodeEra(1982, 1993),
        NumericOneToEightEra(1994, 2007),
        NumericZeroToNineEra(2008, 2014),
        TypedNumericEra(2015, 2023),
        CensusDayEra(2024, last_year),
    )


_DEFAULT_ERAS: Optional[Tuple[EraAdapter, ...]] = None


def get_eras() -> Tuple[EraAdapter, ...]:
    global _DEFAULT_ERAS
    if _DEFAULT_ERAS is None:
        _DEFAULT_ERAS = build_eras()
    return _DEFAULT_ERAS


def supported_years(eras: Optional[Sequence[EraAdapter]] = None) -> List[int]:
    eras = eras if eras is not None else get_eras()
    return [year for era in eras for year in era.years]


def era_for_year(year: int, eras: Optional[Sequence[EraAdapter]] = None) -> EraAdapter:
    """
    Select the era whose year range contains `year`.

    Raises:
        UnsupportedYearError: If no era covers the year
    """
    eras = eras if eras is not None else get_eras()
    for era in eras:
        if era.covers(year):
            return era
    raise UnsupportedYearError(year, supported_years(eras))
