"""Pydantic schemas for addresses, land use and search responses.

Address text is upper-cased on construction; broader address normalization
(abbreviation expansion, geocoding) is not attempted.
"""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


# =============================================================================
# LOCALE
# =============================================================================


class CountryCode(BaseModel):
    """ISO 3166 country identification for an address."""

    model_config = ConfigDict(frozen=True)

    iso_3166_alpha_3: str = Field(min_length=3, max_length=3)
    official_name: str


USA = CountryCode(iso_3166_alpha_3="USA", official_name="UNITED STATES OF AMERICA")

ZIP_CODE_PATTERN = re.compile(r"^\d{5}$")


def is_valid_zip_code(value: str) -> bool:
    """Only 5 digit US zip codes are supported."""
    return bool(ZIP_CODE_PATTERN.match(value))


def _upper(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip().upper() or None


# =============================================================================
# ADDRESS
# =============================================================================


class AddressLine(BaseModel):
    """Street line: number, optional directions, name and suffix."""

    street_number: str
    street_pre_direction: str | None = None
    street_name: str
    street_suffix: str
    street_post_direction: str | None = None

    @field_validator(
        "street_pre_direction", "street_name", "street_suffix", "street_post_direction",
        mode="before",
    )
    @classmethod
    def uppercase(cls, v):
        return _upper(v)

    def __str__(self) -> str:
        parts = [
            self.street_number,
            self.street_pre_direction,
            self.street_name,
            self.street_suffix,
            self.street_post_direction,
        ]
        return " ".join(p for p in parts if p)


class SecondaryAddressLine(BaseModel):
    """Unit designator and number, e.g. UNIT 7A."""

    designator: str
    number: str

    @field_validator("designator", "number", mode="before")
    @classmethod
    def uppercase(cls, v):
        return _upper(v)

    def __str__(self) -> str:
        return f"{self.designator} {self.number}"


class Address(BaseModel):
    address_line: AddressLine
    secondary_address_line: SecondaryAddressLine | None = None
    city: str
    state_or_region: str
    zip_or_postal_code: str
    locale: CountryCode = USA

    @field_validator("city", "state_or_region", mode="before")
    @classmethod
    def uppercase(cls, v):
        return _upper(v)

    @computed_field
    @property
    def formatted(self) -> str:
        lines = str(self.address_line)
        if self.secondary_address_line:
            lines = f"{lines} {self.secondary_address_line}"
        return (
            f"{lines}, {self.city}, {self.state_or_region} "
            f"{self.zip_or_postal_code}, {self.locale.iso_3166_alpha_3}"
        )

    @classmethod
    def in_usa(
        cls,
        street_number: str,
        street_name: str,
        street_suffix: str,
        city: str,
        state_or_region: str,
        zip_or_postal_code: str,
        street_pre_direction: str | None = None,
        street_post_direction: str | None = None,
        secondary_designator: str | None = None,
        secondary_number: str | None = None,
    ) -> "Address":
        """Assemble an address from flat columns.

        The secondary line only exists when both designator and number are set.
        """
        secondary = None
        if secondary_designator and secondary_number:
            secondary = SecondaryAddressLine(
                designator=secondary_designator, number=secondary_number
            )

        return cls(
            address_line=AddressLine(
                street_number=street_number,
                street_pre_direction=street_pre_direction,
                street_name=street_name,
                street_suffix=street_suffix,
                street_post_direction=street_post_direction,
            ),
            secondary_address_line=secondary,
            city=city,
            state_or_region=state_or_region,
            zip_or_postal_code=zip_or_postal_code,
            locale=USA,
        )


# =============================================================================
# LAND USE
# =============================================================================


class LandUseType(str, Enum):
    """Standardized residential land use categories."""

    CONDOMINIUM_UNIT = "CondominiumUnit"
    DUPLEX = "Duplex"
    MOBILE_OR_MANUFACTURED_HOME = "MobileOrManufacturedHome"
    MULTI_FAMILY_DWELLINGS = "MultiFamilyDwellings"
    PLANNED_UNIT_DEVELOPMENT = "PlannedUnitDevelopment"
    QUADRUPLEX = "Quadruplex"
    RURAL_OR_AGRICULTURAL_RESIDENCE = "RuralOrAgriculturalResidence"
    SINGLE_FAMILY_RESIDENTIAL = "SingleFamilyResidential"
    TOWNHOUSE = "Townhouse"
    TRIPLEX = "Triplex"
    VACATION_RESIDENCE = "VacationResidence"


# Checked in order; first match wins
LAND_USE_PATTERNS: list[tuple[LandUseType, list[str]]] = [
    (LandUseType.CONDOMINIUM_UNIT, [r"condominium\s*unit"]),
    (LandUseType.DUPLEX, [r"duplex"]),
    (LandUseType.MOBILE_OR_MANUFACTURED_HOME, [
        r"mobile\s*home",
        r"manufactured\s*home",
        r"mobile\s*or\s*manufactured\s*home",
        r"manufactured\s*or\s*mobile\s*home",
    ]),
    (LandUseType.MULTI_FAMILY_DWELLINGS, [
        r"multi\s*-?\s*family\s*dwellings?",
        r"multi\s*-?\s*family\s*residential",
        r"multi\s*residential",
    ]),
    (LandUseType.PLANNED_UNIT_DEVELOPMENT, [
        r"planned\s*unit\s*development",
        r"planned\s*development",
    ]),
    (LandUseType.QUADRUPLEX, [r"quadruplex"]),
    (LandUseType.RURAL_OR_AGRICULTURAL_RESIDENCE, [
        r"rural\s*or\s*agricultural\s*residence",
        r"rural\s*residence",
        r"agricultural\s*residence",
    ]),
    (LandUseType.SINGLE_FAMILY_RESIDENTIAL, [
        r"single\s*family\s*residential",
        r"single\s*residential",
    ]),
    (LandUseType.TOWNHOUSE, [r"townhouse"]),
    (LandUseType.TRIPLEX, [r"triplex"]),
    (LandUseType.VACATION_RESIDENCE, [r"vacation\s*residence"]),
]

_COMPILED_LAND_USE = [
    (use_type, [re.compile(p, re.IGNORECASE) for p in patterns])
    for use_type, patterns in LAND_USE_PATTERNS
]


def classify_land_use(raw_use: str | None) -> LandUseType | None:
    """Classify a free-text land use description, or None if unrecognized."""
    if not raw_use:
        return None
    for use_type, patterns in _COMPILED_LAND_USE:
        if any(p.search(raw_use) for p in patterns):
            return use_type
    return None


# =============================================================================
# SEARCH RESPONSES
# =============================================================================


class PropensitySearchItem(BaseModel):
    """One ranked propensity result with its property address."""

    apn: str = Field(description="Normalized 14-digit assessor parcel number")
    score: int | None = Field(description="Propensity score, higher ranks first")
    address: Address
