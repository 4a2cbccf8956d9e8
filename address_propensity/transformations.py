"""Pydantic models for raw CSV row → domain record transformation.

These models encode the validation and normalization rules applied to each
source row before it is stored. A row is never rejected at the first bad
field: every field is checked and every problem is returned as a Finding,
so one pass over a file reports all of its data quality issues.

Outcomes per row:
- no usable APN: the row is skipped (the key is needed for everything else)
- blocking findings: the row is rejected and not stored
- non-blocking findings only: the row is stored and the findings are tallied
"""

import re
from collections.abc import Callable, Mapping
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .schemas import Address, LandUseType, classify_land_use, is_valid_zip_code


# =============================================================================
# APN Normalization
# =============================================================================

APN_LENGTH = 14

# Digits with dash separators; must start and end with a digit
APN_PATTERN = re.compile(r"[0-9](?:[0-9-]*[0-9])?")


class InvalidApnError(ValueError):
    """Raised when a raw APN cannot be normalized."""


def normalize_apn(raw_apn: str) -> str:
    """Normalize an assessor parcel number to a 14-digit, zero-padded key.

    Only numeric APNs are supported: "123-456-78" becomes "00000012345678".
    Normalizing an already normalized key returns it unchanged.
    """
    apn = raw_apn or ""
    if not APN_PATTERN.fullmatch(apn):
        raise InvalidApnError(f"Only numeric-based APNs currently supported: {raw_apn!r}")

    digits = apn.replace("-", "")
    if len(digits) > APN_LENGTH:
        raise InvalidApnError(
            f"Up to {APN_LENGTH}-digit APNs (not including `-`'s) are currently supported: {raw_apn!r}"
        )
    return digits.rjust(APN_LENGTH, "0")


# Pluggable: any callable taking a raw APN and returning a canonical key,
# raising ValueError on failure
KeyNormalizer = Callable[[str], str]


# =============================================================================
# Source Layouts
# =============================================================================

# Canonical field → accepted header names, first match wins
PROPERTY_COLUMNS: dict[str, tuple[str, ...]] = {
    "apn": ("apn", "apn_unformatted"),
    "street_number": ("street_number", "primary_number", "house_number"),
    "street_pre_direction": ("street_pre_direction",),
    "street_name": ("street_name",),
    "street_suffix": ("street_suffix",),
    "street_post_direction": ("street_post_direction",),
    "secondary_designator": ("secondary_designator",),
    "secondary_number": ("secondary_number",),
    "city": ("city",),
    "state_or_region": ("state_or_region", "state"),
    "zip_or_postal_code": ("zip_or_postal_code", "zip_code"),
    "latitude": ("latitude",),
    "longitude": ("longitude",),
    "admin_division": ("admin_division", "county_name"),
    "land_use_type": ("land_use_type", "standardized_land_use_type"),
    "area_sq_ft": ("area_sq_ft",),
    "nr_bedrooms": ("nr_bedrooms", "beds_count"),
    "nr_bathrooms": ("nr_bathrooms", "baths"),
    "total_area_sq_ft": ("total_area_sq_ft",),
}

PROPENSITY_COLUMNS: dict[str, tuple[str, ...]] = {
    "apn": ("apn",),
    "zip_or_postal_code": ("zip_or_postal_code", "SitusZIP5", "zip_code", "zip"),
    "score": ("score", "HomeEquityIntelScore_LineofCredit", "propensity_score"),
}

# Human-readable names used in issue categories ("invalid latitude")
FIELD_LABELS = {
    "apn": "apn",
    "street_number": "street number",
    "street_pre_direction": "street pre direction",
    "street_name": "street name",
    "street_suffix": "street suffix",
    "street_post_direction": "street post direction",
    "secondary_designator": "secondary designator",
    "secondary_number": "secondary number",
    "city": "city",
    "state_or_region": "state",
    "zip_or_postal_code": "zip code",
    "latitude": "latitude",
    "longitude": "longitude",
    "admin_division": "admin division",
    "land_use_type": "land use type",
    "area_sq_ft": "area",
    "nr_bedrooms": "bedrooms",
    "nr_bathrooms": "bathrooms",
    "total_area_sq_ft": "total area",
    "score": "score",
}

MISSING_SCORE = "missing score"
INVALID_SCORE = "invalid score"
NOT_IN_CORE_PROPERTIES = "not in core properties"
INCOMPLETE_COORDINATES = "incomplete coordinates"


def canonicalize_row(
    row: Mapping[str | None, object],
    layout: Mapping[str, tuple[str, ...]],
) -> dict[str, str | None]:
    """Map a raw CSV row onto canonical field names.

    Header names and values are trimmed; blank cells become None. Columns
    not in the layout are dropped.
    """
    trimmed = {
        key.strip(): value.strip() or None
        for key, value in row.items()
        if isinstance(key, str) and isinstance(value, str)
    }

    values: dict[str, str | None] = {}
    for field, aliases in layout.items():
        present = [alias for alias in aliases if alias in trimmed]
        if not present:
            continue
        values[field] = next(
            (trimmed[alias] for alias in present if trimmed[alias] is not None),
            None,
        )
    return values


# =============================================================================
# Findings
# =============================================================================


class Finding(BaseModel):
    """A data quality problem found in one source row."""

    field: str = Field(description="Canonical field name the finding is about")
    issue: str = Field(
        description="Issue category tallied in the run summary, e.g. 'invalid latitude'"
    )
    detail: str | None = Field(default=None)
    blocking: bool = Field(
        default=False,
        description="True if the row must not be stored because of this finding",
    )


def findings_from_errors(
    exc: ValidationError,
    values: Mapping[str, str | None],
    blocking: bool,
) -> list[Finding]:
    """Convert pydantic validation errors into one Finding per failed field."""
    findings = []
    seen = set()
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "row"
        if field in seen:
            continue
        seen.add(field)

        kind = "missing" if error["type"] == "missing" or values.get(field) is None else "invalid"
        findings.append(
            Finding(
                field=field,
                issue=f"{kind} {FIELD_LABELS.get(field, field)}",
                detail=error["msg"],
                blocking=blocking,
            )
        )
    return findings


def _normalize_key(
    values: Mapping[str, str | None],
    normalize_key: KeyNormalizer,
    findings: list[Finding],
) -> str | None:
    raw_apn = values.get("apn")
    if not raw_apn:
        findings.append(Finding(field="apn", issue="missing apn", blocking=True))
        return None
    try:
        return normalize_key(raw_apn)
    except ValueError as e:
        findings.append(Finding(field="apn", issue="invalid apn", detail=str(e), blocking=True))
        return None


# =============================================================================
# Property Rows
# =============================================================================


# Largest values the storage columns hold
MAX_BEDROOMS = 2**31 - 1
MAX_AREA_SQ_FT = 2**63 - 1


class RawRow(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PropertyRow(RawRow):
    """Field checks for a raw property row (APN is normalized separately)."""

    street_number: str
    street_pre_direction: str | None = None
    street_name: str
    street_suffix: str
    street_post_direction: str | None = None
    secondary_designator: str | None = None
    secondary_number: str | None = None
    city: str
    state_or_region: str
    zip_or_postal_code: str

    latitude: Decimal | None = Field(default=None, ge=-90, le=90)
    longitude: Decimal | None = Field(default=None, ge=-180, le=180)

    admin_division: str
    land_use_type: str = Field(description="Accepted as given, classified separately")

    area_sq_ft: Decimal | None = Field(
        default=None, ge=-MAX_AREA_SQ_FT, le=MAX_AREA_SQ_FT, description="Any numeric up to the column limit"
    )
    nr_bedrooms: int | None = Field(default=None, gt=0, le=MAX_BEDROOMS)
    nr_bathrooms: Decimal | None = Field(default=None, gt=0, lt=100, description="Half baths allowed")
    total_area_sq_ft: Decimal | None = Field(default=None, ge=-MAX_AREA_SQ_FT, le=MAX_AREA_SQ_FT)

    @field_validator("zip_or_postal_code")
    @classmethod
    def check_zip_code(cls, v):
        if not is_valid_zip_code(v):
            raise ValueError("only 5 digit US zip codes are supported")
        return v


class GeoCoordinate(BaseModel):
    latitude: Decimal
    longitude: Decimal


def _whole_sq_ft(value: Decimal | None) -> int | None:
    if value is None:
        return None
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _coordinate(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP)


class PropertyRecord(BaseModel):
    """A validated property, ready to be stored."""

    apn: str = Field(description="Normalized 14-digit APN")
    address: Address
    admin_division: str
    geo_coordinate: GeoCoordinate | None = None
    land_use_type: str
    land_use_category: LandUseType | None = None
    area_sq_ft: int | None = None
    nr_bedrooms: int | None = None
    nr_bathrooms: Decimal | None = None
    total_area_sq_ft: int | None = None

    @classmethod
    def from_row(cls, apn: str, row: PropertyRow) -> "PropertyRecord":
        geo_coordinate = None
        if row.latitude is not None and row.longitude is not None:
            geo_coordinate = GeoCoordinate(
                latitude=_coordinate(row.latitude),
                longitude=_coordinate(row.longitude),
            )

        return cls(
            apn=apn,
            address=Address.in_usa(
                street_number=row.street_number,
                street_pre_direction=row.street_pre_direction,
                street_name=row.street_name,
                street_suffix=row.street_suffix,
                street_post_direction=row.street_post_direction,
                secondary_designator=row.secondary_designator,
                secondary_number=row.secondary_number,
                city=row.city,
                state_or_region=row.state_or_region,
                zip_or_postal_code=row.zip_or_postal_code,
            ),
            admin_division=row.admin_division,
            geo_coordinate=geo_coordinate,
            land_use_type=row.land_use_type,
            land_use_category=classify_land_use(row.land_use_type),
            area_sq_ft=_whole_sq_ft(row.area_sq_ft),
            nr_bedrooms=row.nr_bedrooms,
            nr_bathrooms=row.nr_bathrooms,
            total_area_sq_ft=_whole_sq_ft(row.total_area_sq_ft),
        )


# =============================================================================
# Propensity Rows
# =============================================================================

MIN_SCORE = 1
MAX_SCORE = 950


class PropensityRow(RawRow):
    """Field checks for a raw propensity row (APN is normalized separately)."""

    zip_or_postal_code: str | None = None
    score: int | None = Field(default=None, ge=MIN_SCORE, le=MAX_SCORE)

    @field_validator("zip_or_postal_code")
    @classmethod
    def check_zip_code(cls, v):
        if v is not None and not is_valid_zip_code(v):
            raise ValueError("only 5 digit US zip codes are supported")
        return v


class PropensityRecord(BaseModel):
    """A propensity score ready to be stored. Score may be absent."""

    apn: str = Field(description="Normalized 14-digit APN, independently normalized")
    score: int | None = None
    zip_or_postal_code: str | None = None


def _propensity_finding(field: str, error: dict) -> Finding:
    if field == "score":
        out_of_bounds = error["type"] in ("greater_than_equal", "less_than_equal")
        return Finding(
            field="score",
            issue=INVALID_SCORE if out_of_bounds else MISSING_SCORE,
            detail=error["msg"],
        )
    return Finding(
        field=field,
        issue=f"invalid {FIELD_LABELS.get(field, field)}",
        detail=error["msg"],
    )


# =============================================================================
# Row Mapping
# =============================================================================


class MappedRow(BaseModel):
    """Result of mapping one source row: a record, findings, or both."""

    key: str | None = Field(default=None, description="Normalized APN, None if unusable")
    record: PropertyRecord | PropensityRecord | None = None
    findings: list[Finding] = Field(default_factory=list)

    @property
    def key_failed(self) -> bool:
        return self.key is None

    @property
    def blocked(self) -> bool:
        return self.record is None

    @property
    def issues(self) -> list[str]:
        return [f.issue for f in self.findings]


def map_property_row(
    row: Mapping[str | None, object],
    normalize_key: KeyNormalizer = normalize_apn,
) -> MappedRow:
    """Map a raw property row. Any field failure blocks the record."""
    values = canonicalize_row(row, PROPERTY_COLUMNS)
    findings: list[Finding] = []
    key = _normalize_key(values, normalize_key, findings)

    parsed = None
    try:
        parsed = PropertyRow.model_validate(values)
    except ValidationError as e:
        findings.extend(findings_from_errors(e, values, blocking=True))

    if parsed is not None and (parsed.latitude is None) != (parsed.longitude is None):
        findings.append(
            Finding(
                field="latitude" if parsed.latitude is None else "longitude",
                issue=INCOMPLETE_COORDINATES,
                detail="latitude and longitude must both be present; coordinates dropped",
            )
        )

    record = None
    if key is not None and parsed is not None:
        record = PropertyRecord.from_row(key, parsed)
    return MappedRow(key=key, record=record, findings=findings)


def map_propensity_row(
    row: Mapping[str | None, object],
    normalize_key: KeyNormalizer = normalize_apn,
) -> MappedRow:
    """Map a raw propensity row.

    Only the APN blocks: a bad or missing score or zip code is recorded and
    the field is stored empty.
    """
    values = canonicalize_row(row, PROPENSITY_COLUMNS)
    findings: list[Finding] = []
    key = _normalize_key(values, normalize_key, findings)

    try:
        parsed = PropensityRow.model_validate(values)
    except ValidationError as e:
        failed = set()
        for error in e.errors():
            field = str(error["loc"][0])
            if field in failed:
                continue
            failed.add(field)
            findings.append(_propensity_finding(field, error))
        parsed = PropensityRow.model_validate(
            {k: v for k, v in values.items() if k not in failed}
        )

    if parsed.score is None and not any(f.field == "score" for f in findings):
        findings.append(Finding(field="score", issue=MISSING_SCORE))

    record = None
    if key is not None:
        record = PropensityRecord(
            apn=key,
            score=parsed.score,
            zip_or_postal_code=parsed.zip_or_postal_code,
        )
    return MappedRow(key=key, record=record, findings=findings)


# =============================================================================
# Run Statistics
# =============================================================================


class IngestionSummary(BaseModel):
    """Statistics from one loader run. Not persisted."""

    source: str = Field(description="Source file path")
    entity: str = Field(description="property or propensity")
    records_processed: int = 0
    records_saved: int = 0
    records_skipped: int = 0
    records_rejected: int = 0
    skipped_rows: list[int] = Field(default_factory=list)
    issues: dict[str, int] = Field(default_factory=dict)
    interrupted: bool = False

    @property
    def nr_issues(self) -> int:
        return sum(self.issues.values())

    def skip(self, row_index: int) -> None:
        self.records_skipped += 1
        self.skipped_rows.append(row_index)

    def record_issues(self, findings: list[Finding]) -> None:
        for finding in findings:
            self.issues[finding.issue] = self.issues.get(finding.issue, 0) + 1

    def render(self) -> str:
        issues = f"{self.nr_issues} issues found"
        if self.issues:
            breakdown = ", ".join(f"{count} {issue}" for issue, count in sorted(self.issues.items()))
            issues = f"{issues}: {breakdown}"

        line = (
            f"Saved {self.records_saved} {self.entity} records from {self.source} "
            f"({self.records_skipped} skipped, {self.records_rejected} rejected) with {issues}"
        )
        if self.interrupted:
            line = f"{line} [interrupted after {self.records_processed} records]"
        return line
