"""
School directory processing (CDE SchoolDirectory export).

The directory is a current snapshot of public schools and districts, not a
yearly file. Headers vary between exports, so every field is resolved
through a column contract; only the CDS code is mandatory.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import pandas as pd

from caschooldata.exceptions import MalformedIdentifierError
from caschooldata.processing.era_adapters import ColumnContract, ColumnSpec, RawTable, as_raw_frame
from caschooldata.processing.quality import QualityReport, WarningCode
from caschooldata.utilities.cds_codes import AggregationLevel, classify, decompose

logger = logging.getLogger(__name__)

DEFAULT_STATE = "CA"
NO_CHARTER = ("", "0", "N", "No")

DIRECTORY_CONTRACT = ColumnContract([
    ColumnSpec("cds_code", ("CDSCode", "CDS Code", "CDS")),
    ColumnSpec("county_name", ("County", "CountyName", "County Name"), required=False),
    ColumnSpec("district_name", ("District", "DistrictName", "District Name", "DOC"), required=False),
    ColumnSpec("school_name", ("School", "SchoolName", "School Name"), required=False),
    ColumnSpec("school_type", ("SOC", "SchoolType", "School Type", "EntityType", "EILName"), required=False),
    ColumnSpec("status", ("StatusType", "Status", "StatusCode"), required=False),
    ColumnSpec("charter", ("Charter", "CharterNum", "Charter Number"), required=False),
    ColumnSpec("street", ("Street", "StreetAbr", "Address", "MailStreet"), required=False),
    ColumnSpec("city", ("City", "MailCity"), required=False),
    ColumnSpec("state", ("State", "MailState"), required=False),
    ColumnSpec("zip", ("Zip", "ZipCode", "MailZip"), required=False),
    ColumnSpec("phone", ("Phone", "Telephone", "PhoneNumber"), required=False),
    ColumnSpec("admin_first_name", ("AdmFName", "AdmFName1", "AdminFirstName", "PrincipalFirstName"), required=False),
    ColumnSpec("admin_last_name", ("AdmLName", "AdmLName1", "AdminLastName", "PrincipalLastName"), required=False),
    ColumnSpec("admin_name", ("Administrator", "Principal", "AdminName"), required=False),
    ColumnSpec("email", ("AdmEmail", "AdmEmail1", "Email", "EmailAddress"), required=False),
    ColumnSpec("website", ("Website", "URL", "Web"), required=False),
    ColumnSpec("latitude", ("Latitude", "Lat"), required=False),
    ColumnSpec("longitude", ("Longitude", "Long", "Lon"), required=False),
    ColumnSpec("open_date", ("OpenDate", "DateOpened"), required=False),
    ColumnSpec("closed_date", ("ClosedDate", "DateClosed"), required=False),
], era="school directory")

DIRECTORY_COLUMNS = [
    "cds_code", "county_code", "district_code", "school_code",
    "agg_level", "county_name", "district_name", "school_name",
    "school_type", "status", "charter_status",
    "street", "city", "state", "zip", "phone",
    "admin_name", "email", "website",
    "latitude", "longitude",
    "open_date", "closed_date",
]


@dataclass(frozen=True)
class DirectoryRecord:
    cds_code: str
    agg_level: AggregationLevel
    county_name: Optional[str] = None
    district_name: Optional[str] = None
    school_name: Optional[str] = None
    school_type: Optional[str] = None
    status: Optional[str] = None
    charter_status: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = DEFAULT_STATE
    zip: Optional[str] = None
    phone: Optional[str] = None
    admin_name: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    open_date: Optional[str] = None
    closed_date: Optional[str] = None

    @property
    def county_code(self) -> str:
        return self.cds_code[:2]

    @property
    def district_code(self) -> str:
        return self.cds_code[2:7]

    @property
    def school_code(self) -> str:
        return self.cds_code[7:]

    @property
    def is_charter(self) -> bool:
        return self.charter_status == "Y"


def _cell(record, column) -> str:
    if column is None:
        return ""
    value = record.get(column)
    return "" if value is None else str(value).strip()


def charter_flag(value: str) -> str:
    """
    'Y' when the charter column holds a charter number or yes flag.

    Examples:
        >>> charter_flag("1234")
        'Y'
        >>> charter_flag("0")
        'N'
    """
    return "N" if value.strip() in NO_CHARTER else "Y"


def admin_name(first: str, last: str) -> Optional[str]:
    """First and last name joined, or whichever one is present."""
    name = " ".join(part for part in (first, last) if part)
    return name or None


def _coordinate(text: str, field: str, cds_code: str, report: QualityReport) -> Optional[float]:
    if not text or text.lower() in ("no data", "na"):
        return None
    try:
        return float(text)
    except ValueError:
        report.add(WarningCode.UNPARSEABLE_VALUE, f"{field} '{text}' is not a number",
                   cds_code=cds_code, detail=field)
        return None


def process_directory(raw_table: RawTable, report: Optional[QualityReport] = None) -> List[DirectoryRecord]:
    """
    Standardize a raw school directory export.

    CDS codes that lost their leading zeros are padded back to 14 digits,
    rows with unusable codes are dropped with a warning, and the
    aggregation level comes from the code itself.

    Args:
        raw_table: Raw directory table (string cells)
        report: QualityReport for row/value problems

    Returns:
        DirectoryRecord list in file order

    Raises:
        MissingColumnError: If no CDS code column is present
    """
    report = report if report is not None else QualityReport()
    frame = as_raw_frame(raw_table)
    columns = DIRECTORY_CONTRACT.resolve(frame.columns)

    records: List[DirectoryRecord] = []
    for record in frame.to_dict("records"):
        raw_code = _cell(record, columns["cds_code"])
        try:
            cds_code = decompose(raw_code).code
        except MalformedIdentifierError as e:
            report.add(WarningCode.MALFORMED_IDENTIFIER, f"Dropped directory row: {e.reason}", detail=raw_code)
            continue

        def text(field):
            return _cell(record, columns[field]) or None

        if columns["admin_first_name"] or columns["admin_last_name"]:
            admin = admin_name(_cell(record, columns["admin_first_name"]), _cell(record, columns["admin_last_name"]))
        else:
            admin = text("admin_name")

        records.append(DirectoryRecord(
            cds_code=cds_code,
            agg_level=classify(cds_code),
            county_name=text("county_name"),
            district_name=text("district_name"),
            school_name=text("school_name"),
            school_type=text("school_type"),
            status=text("status"),
            charter_status=charter_flag(_cell(record, columns["charter"])) if columns["charter"] else None,
            street=text("street"),
            city=text("city"),
            state=text("state") if columns["state"] else DEFAULT_STATE,
            zip=text("zip"),
            phone=text("phone"),
            admin_name=admin,
            email=text("email"),
            website=text("website"),
            latitude=_coordinate(_cell(record, columns["latitude"]), "latitude", cds_code, report),
            longitude=_coordinate(_cell(record, columns["longitude"]), "longitude", cds_code, report),
            open_date=text("open_date"),
            closed_date=text("closed_date"),
        ))

    logger.info(f"Processed {len(records):,} directory rows")
    return records


def directory_to_frame(records: List[DirectoryRecord]) -> pd.DataFrame:
    rows = []
    for r in records:
        rows.append({
            "cds_code": r.cds_code,
            "county_code": r.county_code,
            "district_code": r.district_code,
            "school_code": r.school_code,
            "agg_level": r.agg_level.value,
            "county_name": r.county_name,
            "district_name": r.district_name,
            "school_name": r.school_name,
            "school_type": r.school_type,
            "status": r.status,
            "charter_status": r.charter_status,
            "street": r.street,
            "city": r.city,
            "state": r.state,
            "zip": r.zip,
            "phone": r.phone,
            "admin_name": r.admin_name,
            "email": r.email,
            "website": r.website,
            "latitude": r.latitude,
            "longitude": r.longitude,
            "open_date": r.open_date,
            "closed_date": r.closed_date,
        })
    return pd.DataFrame.from_records(rows, columns=DIRECTORY_COLUMNS)
