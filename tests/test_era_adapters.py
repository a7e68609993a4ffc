"""
Tests for era selection, column contracts and the per-era adapters.
"""

import pytest

from caschooldata.exceptions import MissingColumnError, UnsupportedYearError
from caschooldata.processing.era_adapters import (
    CensusDayEra,
    ColumnContract,
    ColumnSpec,
    LetterCodeEra,
    build_eras,
    era_for_year,
    historical_year_label,
    normalize_charter,
    normalize_header,
    supported_years,
)
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.processing.suppression import SUPPRESSED, Completeness
from caschooldata.utilities.cds_codes import STATE_CDS_CODE, AggregationLevel


def by_key(rows):
    return {(r.cds_code, r.reporting_category): r for r in rows}


# ===========================================================================
# Era registry
# ===========================================================================

class TestEraSelection:
    """Year -> era boundaries."""

    @pytest.mark.parametrize("year, name", [
        (1982, "letter_codes"),
        (1993, "letter_codes"),
        (1994, "numeric_1_8"),
        (2007, "numeric_1_8"),
        (2008, "numeric_0_9"),
        (2014, "numeric_0_9"),
        (2015, "numeric_0_9_typed"),
        (2023, "numeric_0_9_typed"),
        (2024, "census_day"),
        (2025, "census_day"),
    ])
    def test_boundaries(self, year, name):
        """Each boundary year lands in the right era."""
        assert era_for_year(year).name == name

    @pytest.mark.parametrize("year", [1981, 1900, 2026])
    def test_unsupported_year(self, year):
        """Years outside every era are fatal."""
        with pytest.raises(UnsupportedYearError) as exc_info:
            era_for_year(year)
        assert exc_info.value.year == year

    def test_eras_are_contiguous_and_disjoint(self):
        """Every supported year belongs to exactly one era."""
        eras = build_eras()
        years = [y for era in eras for y in era.years]
        assert years == list(range(1982, 2026))
        assert supported_years() == years

    def test_configurable_last_year(self):
        """The census-day era can be extended to later years."""
        eras = build_eras(last_year=2030)
        assert era_for_year(2030, eras).name == "census_day"

    def test_unavailable_fields(self):
        """Eras declare which fields they can never populate."""
        eras = {era.name: era for era in build_eras()}
        assert not eras["letter_codes"].populates("county_name")
        assert eras["letter_codes"].populates("school_name")
        assert not eras["numeric_1_8"].populates("school_name")
        assert not eras["numeric_0_9_typed"].populates("charter_status")
        assert eras["census_day"].populates("charter_status")
        assert "TK" not in eras["numeric_0_9"].grade_labels
        assert "TK" in eras["census_day"].grade_labels

    def test_historical_year_label(self):
        """ACADEMIC_YEAR labels change format in 1994."""
        assert historical_year_label(1985) == "8485"
        assert historical_year_label(2000) == "1999-00"
        assert historical_year_label(2016) == "2015-16"


# ===========================================================================
# Column contracts
# ===========================================================================

class TestColumnContract:
    """Logical field -> header resolution."""

    def test_header_normalization(self):
        """Case, spaces, dots and underscores are normalized."""
        assert normalize_header(" Gr 1 ") == "GR_1"
        assert normalize_header("County.Code") == "COUNTY_CODE"

    def test_first_spelling_wins(self):
        """When several spellings are present the first listed is used."""
        contract = ColumnContract([ColumnSpec("total", ("ENR_TOTAL", "TOTAL_ENR"))])
        assert contract.resolve(["TOTAL_ENR", "ENR_TOTAL"]) == {"total": "ENR_TOTAL"}

    def test_optional_field_missing(self):
        """Missing optional fields resolve to None."""
        contract = ColumnContract([
            ColumnSpec("cds_code", ("CDS_CODE",)),
            ColumnSpec("school_name", ("SCHOOL",), required=False),
        ])
        assert contract.resolve(["cds code"]) == {"cds_code": "cds code", "school_name": None}

    def test_required_field_missing(self):
        """Missing mandatory fields raise MissingColumnError naming the field."""
        contract = ColumnContract([ColumnSpec("total", ("ENR_TOTAL", "TOTAL_ENR"))], era="test")
        with pytest.raises(MissingColumnError) as exc_info:
            contract.resolve(["CDS_CODE"])
        assert exc_info.value.field == "total"
        assert exc_info.value.spellings == ("ENR_TOTAL", "TOTAL_ENR")


# ===========================================================================
# Historical adapters
# ===========================================================================

class TestHistoricalAdapters:
    """School files with one row per school x race x gender."""

    def test_numeric_era_collapses_schools(self, numeric_era_table):
        """Rows collapse into TA plus one row per race and gender category."""
        rows = era_for_year(2010).adapt(numeric_era_table, 2010)
        keyed = by_key(rows)

        assert all(r.agg_level == AggregationLevel.SCHOOL for r in rows)
        assert len(rows) == 11

        total_a = keyed[("01100170000001", "TA")]
        assert total_a.total_enrollment == 25
        assert total_a.grade("K") == 14
        assert total_a.grade("01") == 11
        assert keyed[("01100170000001", "RE_H")].total_enrollment == 15
        assert keyed[("01100170000001", "RE_W")].total_enrollment == 10
        assert keyed[("01100170000001", "GN_F")].total_enrollment == 15
        assert keyed[("01100170000001", "GN_M")].total_enrollment == 10

    def test_names_and_charter(self, numeric_era_table):
        """Named eras carry entity names; no historical era has charter status."""
        rows = era_for_year(2010).adapt(numeric_era_table, 2010)
        school = by_key(rows)[("19647330000003", "TA")]
        assert school.county_name == "Los Angeles"
        assert school.district_name == "Los Angeles Unified"
        assert school.school_name == "School C"
        assert school.charter_status is None

    def test_suppressed_cell_is_tracked(self, numeric_era_table):
        """A suppressed grade stays suppressed and is flagged."""
        rows = era_for_year(2010).adapt(numeric_era_table, 2010)
        school_b = by_key(rows)[("01100170000002", "TA")]
        assert school_b.grade("K") is SUPPRESSED
        assert school_b.completeness_of("K") == Completeness.SUPPRESSED
        assert school_b.completeness_of("TOTAL") == Completeness.COMPLETE

    def test_category_order(self, numeric_era_table):
        """Categories within a school follow the code map order."""
        rows = era_for_year(2010).adapt(numeric_era_table, 2010)
        categories = [r.reporting_category for r in rows if r.cds_code == "01100170000001"]
        assert categories == ["TA", "RE_H", "RE_W", "GN_F", "GN_M"]

    def test_letter_codes_collapse_asian_subgroups(self, make_historical_table):
        """Chinese and Japanese letter codes both count as asian."""
        table = make_historical_table([
            {"cds": "01100170000001", "race": "C", "gender": "M", "grades": {"KDGN": "3"}, "total": "3",
             "DISTRICT": "Alameda City", "SCHOOL": "Lincoln"},
            {"cds": "01100170000001", "race": "J", "gender": "F", "grades": {"KDGN": "2"}, "total": "2",
             "DISTRICT": "Alameda City", "SCHOOL": "Lincoln"},
        ], names=("DISTRICT", "SCHOOL"), race_column="RACE_ETHNICITY")
        rows = era_for_year(1990).adapt(table, 1990)
        keyed = by_key(rows)
        assert keyed[("01100170000001", "RE_A")].total_enrollment == 5
        assert keyed[("01100170000001", "TA")].total_enrollment == 5
        assert keyed[("01100170000001", "TA")].county_name is None
        assert keyed[("01100170000001", "TA")].school_name == "Lincoln"

    def test_unmapped_race_code(self, make_historical_table):
        """Codes outside the era's vocabulary go to RE_UNMAPPED with one warning."""
        table = make_historical_table([
            {"cds": "01100170000001", "race": "Q", "gender": "M", "total": "4"},
            {"cds": "01100170000002", "race": "Q", "gender": "F", "total": "6"},
        ], names=(), race_column="RACE_ETHNICITY")
        report = QualityReport(1990)
        rows = LetterCodeEra(1982, 1993).adapt(table, 1990, report)
        assert sum(r.total_enrollment for r in rows if r.reporting_category == "RE_UNMAPPED") == 10
        assert len(report.by_code(WarningCode.UNMAPPED_CODE)) == 1

    def test_numeric_one_to_eight_has_no_names(self, make_historical_table):
        """1994-2007 files have codes only; race 8 is multiracial."""
        table = make_historical_table([
            {"cds": "01100170000001", "race": "8", "gender": "F", "total": "7"},
        ], names=())
        rows = era_for_year(2000).adapt(table, 2000)
        keyed = by_key(rows)
        assert keyed[("01100170000001", "RE_T")].total_enrollment == 7
        assert keyed[("01100170000001", "TA")].school_name is None

    def test_typed_era_uses_combined_records(self, make_historical_table):
        """Only ENR_TYPE 'C' rows are used from 2015 on."""
        table = make_historical_table([
            {"cds": "01100170000001", "race": "5", "gender": "F", "total": "20", "enr_type": "C"},
            {"cds": "01100170000001", "race": "5", "gender": "F", "total": "15", "enr_type": "P"},
        ], enr_type=True)
        rows = era_for_year(2016).adapt(table, 2016)
        assert by_key(rows)[("01100170000001", "TA")].total_enrollment == 20

    def test_typed_era_without_record_type(self, make_historical_table):
        """A 2015-2023 file without ENR_TYPE is adapted unfiltered."""
        table = make_historical_table([
            {"cds": "01100170000001", "race": "5", "gender": "F", "total": "20"},
            {"cds": "01100170000001", "race": "5", "gender": "M", "total": "15"},
        ])
        rows = era_for_year(2016).adapt(table, 2016)
        assert by_key(rows)[("01100170000001", "TA")].total_enrollment == 35

    def test_bundled_years_are_filtered(self, make_historical_table):
        """Files bundling several years keep only the requested one."""
        table = make_historical_table([
            {"cds": "01100170000001", "race": "5", "gender": "F", "total": "20",
             "academic_year": "2014-15"},
            {"cds": "01100170000001", "race": "5", "gender": "F", "total": "30",
             "academic_year": "2015-16"},
        ], enr_type=True, academic_year=True)
        rows = era_for_year(2016).adapt(table, 2016)
        assert by_key(rows)[("01100170000001", "TA")].total_enrollment == 30

    def test_bad_identifiers_are_dropped(self, make_historical_table):
        """Malformed and non-school codes are dropped with warnings."""
        table = make_historical_table([
            {"cds": "ABC", "race": "5", "gender": "F", "total": "1"},
            {"cds": "01100170000000", "race": "5", "gender": "F", "total": "2"},
            {"cds": "01100170000001", "race": "5", "gender": "F", "total": "3"},
        ])
        report = QualityReport(2010)
        rows = era_for_year(2010).adapt(table, 2010, report)
        assert {r.cds_code for r in rows} == {"01100170000001"}
        assert report.has(WarningCode.MALFORMED_IDENTIFIER)
        assert report.has(WarningCode.AGGREGATION_LEVEL_MISMATCH)

    def test_unparseable_cell(self, make_historical_table):
        """Garbage cells are treated as suppressed and reported."""
        table = make_historical_table([
            {"cds": "01100170000001", "race": "5", "gender": "F", "grades": {"GR_3": "n/a"}, "total": "3"},
        ])
        report = QualityReport(2010)
        rows = era_for_year(2010).adapt(table, 2010, report)
        assert by_key(rows)[("01100170000001", "TA")].grade("03") is SUPPRESSED
        assert report.has(WarningCode.UNPARSEABLE_VALUE)

    def test_rows_input(self):
        """A header row plus data rows is accepted as a raw table."""
        header = ["CDS_CODE", "ETHNIC", "GENDER", "KDGN"] + [f"GR_{g}" for g in range(1, 13)] + ["ENR_TOTAL"]
        row = ["01100170000001", "5", "F", "1"] + ["0"] * 12 + ["1"]
        rows = era_for_year(2000).adapt([header, row], 2000)
        assert by_key(rows)[("01100170000001", "TA")].total_enrollment == 1


# ===========================================================================
# Census-day adapter
# ===========================================================================

class TestCensusDayAdapter:
    """2024+ files with native aggregates."""

    def test_native_levels(self, census_table):
        """State, county, district and school rows come straight from the file."""
        rows = era_for_year(2024).adapt(census_table, 2024)
        keyed = by_key(rows)
        assert len(rows) == 7
        assert keyed[(STATE_CDS_CODE, "TA")].agg_level == AggregationLevel.STATE
        assert keyed[("01000000000000", "TA")].agg_level == AggregationLevel.COUNTY
        assert keyed[("01100170000000", "TA")].agg_level == AggregationLevel.DISTRICT
        assert keyed[("01100170000001", "TA")].agg_level == AggregationLevel.SCHOOL

    def test_counts_and_grades(self, census_table):
        """All fourteen grade labels including TK are populated."""
        row = by_key(era_for_year(2024).adapt(census_table, 2024))[(STATE_CDS_CODE, "RE_H")]
        assert row.total_enrollment == 60
        assert row.grade("TK") == 3
        assert row.grade("K") == 7
        assert row.grade("01") == 50
        assert row.grade("12") == 0
        assert len(row.grade_labels) == 14

    def test_charter_normalized(self, census_table):
        """Charter values are ALL, Y or N."""
        keyed = by_key(era_for_year(2024).adapt(census_table, 2024))
        assert keyed[(STATE_CDS_CODE, "TA")].charter_status == "ALL"
        assert keyed[("01100170000001", "TA")].charter_status == "N"
        assert normalize_charter(" yes ") == "Y"
        assert normalize_charter("") == "ALL"

    def test_suppressed_row(self, census_table):
        """An all-asterisk row keeps SUPPRESSED in every field."""
        row = by_key(era_for_year(2024).adapt(census_table, 2024))[("01100170000001", "RE_H")]
        assert row.total_enrollment is SUPPRESSED
        assert all(value is SUPPRESSED for _, value in row.grades)

    def test_unknown_category_kept(self):
        """Unknown reporting categories are kept under their raw code."""
        era = CensusDayEra(2024, 2025)
        header = ["Aggregate Level", "County Code", "District Code", "School Code",
                  "Reporting Category", "TOTAL_ENR"] + ["GR_TK", "GR_KN"] + [f"GR_{g:02d}" for g in range(1, 13)]
        row = ["T", "00", "00000", "0000000", "XX_NEW", "5"] + ["0"] * 14
        report = QualityReport(2024)
        rows = era.adapt([header, row], 2024, report)
        assert rows[0].reporting_category == "XX_NEW"
        assert rows[0].charter_status == "ALL"
        assert report.has(WarningCode.UNMAPPED_CODE)

    def test_level_mismatch_dropped(self):
        """A declared level that disagrees with the code drops the row with a warning."""
        era = CensusDayEra(2024, 2025)
        header = ["Aggregate Level", "County Code", "District Code", "School Code",
                  "Reporting Category", "TOTAL_ENR"] + ["GR_TK", "GR_KN"] + [f"GR_{g:02d}" for g in range(1, 13)]
        mislabelled = ["D", "01", "10017", "0000001", "TA", "5"] + ["0"] * 14
        school = ["S", "01", "10017", "0000001", "TA", "7"] + ["0"] * 14
        report = QualityReport(2024)
        rows = era.adapt([header, mislabelled, school], 2024, report)
        assert len(rows) == 1
        assert rows[0].agg_level == AggregationLevel.SCHOOL
        assert rows[0].total_enrollment == 7
        assert report.has(WarningCode.AGGREGATION_LEVEL_MISMATCH)

    def test_missing_school_code_dropped(self):
        """A school row with a blank school code cannot be composed."""
        era = CensusDayEra(2024, 2025)
        header = ["Aggregate Level", "County Code", "District Code", "School Code",
                  "Reporting Category", "TOTAL_ENR"] + ["GR_TK", "GR_KN"] + [f"GR_{g:02d}" for g in range(1, 13)]
        row = ["S", "01", "10017", "", "TA", "5"] + ["0"] * 14
        report = QualityReport(2024)
        assert era.adapt([header, row], 2024, report) == []
        assert report.has(WarningCode.MALFORMED_IDENTIFIER)

    def test_missing_category_column(self, census_table):
        """The reporting category column is mandatory."""
        with pytest.raises(MissingColumnError) as exc_info:
            era_for_year(2024).adapt(census_table.drop(columns=["Reporting Category"]), 2024)
        assert exc_info.value.field == "reporting_category"
