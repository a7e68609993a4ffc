"""
Raw-table fixtures for pytest

Every fixture builds string-cell tables shaped like the CDE files of one
era, so tests exercise the same code paths as downloaded data.

Usage:
    pytest tests/ -v
"""

import pytest
from sqlalchemy import create_engine

from caschooldata.database.cache import TableCache
from caschooldata.utilities.common import raw_table_from_rows

HISTORICAL_GRADE_COLUMNS = ["KDGN"] + [f"GR_{g}" for g in range(1, 13)]
MODERN_GRADE_COLUMNS = ["GR_TK", "GR_KN"] + [f"GR_{g:02d}" for g in range(1, 13)]


# --- Historical school files (1982-2023) ---

def _historical_header(names, race_column, enr_type, academic_year):
    header = ["CDS_CODE"]
    if academic_year:
        header.append("ACADEMIC_YEAR")
    if enr_type:
        header.append("ENR_TYPE")
    header += names
    header += [race_column, "GENDER"]
    header += HISTORICAL_GRADE_COLUMNS
    header.append("ENR_TOTAL")
    return header


@pytest.fixture
def make_historical_table():
    """
    Factory for historical school-file tables.

    Usage:
        def test_something(make_historical_table):
            table = make_historical_table([
                {"cds": "01100170000001", "race": "5", "gender": "F",
                 "grades": {"KDGN": "10"}, "total": "10"},
            ])

    Grade columns not given are "0". Name keys (COUNTY, DISTRICT, SCHOOL,
    ...) are read from the row dict by column name.
    """
    def factory(rows, names=("COUNTY", "DISTRICT", "SCHOOL"), race_column="ETHNIC",
                enr_type=False, academic_year=False):
        header = _historical_header(list(names), race_column, enr_type, academic_year)
        data = []
        for row in rows:
            grades = row.get("grades", {})
            cells = [row["cds"]]
            if academic_year:
                cells.append(row.get("academic_year", ""))
            if enr_type:
                cells.append(row.get("enr_type", "C"))
            cells += [row.get(name, "") for name in names]
            cells += [row["race"], row["gender"]]
            cells += [grades.get(column, "0") for column in HISTORICAL_GRADE_COLUMNS]
            cells.append(row["total"])
            data.append(cells)
        return raw_table_from_rows(header, data)
    return factory


@pytest.fixture
def numeric_era_table(make_historical_table):
    """
    2008-2014 style file: three schools in two counties.

    School 01100170000001: hispanic female 15, white male 10
    School 01100170000002: hispanic male 12 (kindergarten suppressed)
    School 19647330000003: asian female 5
    """
    alameda = {"COUNTY": "Alameda", "DISTRICT": "Alameda Unified"}
    return make_historical_table([
        {**alameda, "SCHOOL": "School A", "cds": "01100170000001", "race": "5", "gender": "F",
         "grades": {"KDGN": "10", "GR_1": "5"}, "total": "15"},
        {**alameda, "SCHOOL": "School A", "cds": "01100170000001", "race": "7", "gender": "M",
         "grades": {"KDGN": "4", "GR_1": "6"}, "total": "10"},
        {**alameda, "SCHOOL": "School B", "cds": "01100170000002", "race": "5", "gender": "M",
         "grades": {"KDGN": "*", "GR_1": "12"}, "total": "12"},
        {"COUNTY": "Los Angeles", "DISTRICT": "Los Angeles Unified", "SCHOOL": "School C",
         "cds": "19647330000003", "race": "2", "gender": "F",
         "grades": {"KDGN": "3", "GR_1": "2"}, "total": "5"},
    ])


# --- Census-day files (2024+) ---

CENSUS_HEADER = [
    "Academic Year", "Aggregate Level", "County Code", "District Code", "School Code",
    "County Name", "District Name", "School Name", "Charter", "Reporting Category",
    "TOTAL_ENR",
] + MODERN_GRADE_COLUMNS


def census_row(level, county, district, school, category, total, tk, k, g1,
               charter="All", names=("", "", ""), fill="0"):
    """One census-day row; grades 02-12 are set to fill."""
    return (
        ["2023-24", level, county, district, school, *names, charter, category, total, tk, k, g1]
        + [fill] * 11
    )


@pytest.fixture
def census_table():
    """
    2024 style file with native aggregates for one district and one school.

    State/county/district/school totals are all 100 (TK 5, K 10, grade 1 85).
    """
    rows = [
        census_row("T", "00", "00000", "0000000", "TA", "100", "5", "10", "85", names=("State", "", "")),
        census_row("T", "00", "00000", "0000000", "RE_H", "60", "3", "7", "50", names=("State", "", "")),
        census_row("T", "00", "00000", "0000000", "GN_F", "48", "2", "6", "40", names=("State", "", "")),
        census_row("C", "01", "", "", "TA", "100", "5", "10", "85", names=("Alameda", "", "")),
        census_row("D", "01", "10017", "", "TA", "100", "5", "10", "85",
                   names=("Alameda", "Alameda Unified", "")),
        census_row("S", "01", "10017", "0000001", "TA", "100", "5", "10", "85", charter="N",
                   names=("Alameda", "Alameda Unified", "School A")),
        census_row("S", "01", "10017", "0000001", "RE_H", "*", "*", "*", "*", charter="N", fill="*",
                   names=("Alameda", "Alameda Unified", "School A")),
    ]
    return raw_table_from_rows(CENSUS_HEADER, rows)


@pytest.fixture
def make_census_table():
    """Factory: census-day raw table from census_row argument tuples."""
    def _make(rows):
        return raw_table_from_rows(CENSUS_HEADER, [census_row(*args) for args in rows])
    return _make


# --- Cache ---

@pytest.fixture
def table_cache(tmp_path):
    """TableCache on a throwaway SQLite file."""
    engine = create_engine(f"sqlite:///{tmp_path / 'cache.db'}")
    return TableCache(engine=engine, max_age_days=30)
