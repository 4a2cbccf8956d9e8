"""SQLAlchemy models for property and propensity data."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Integer, Numeric, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Property(Base):
    """A core property record keyed by normalized APN."""

    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    apn: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)

    # Structured street address
    street_number: Mapped[str] = mapped_column(String(10), nullable=False)
    street_pre_direction: Mapped[str | None] = mapped_column(String(2))
    street_name: Mapped[str] = mapped_column(String(50), nullable=False)
    street_suffix: Mapped[str] = mapped_column(String(20), nullable=False)
    street_post_direction: Mapped[str | None] = mapped_column(String(2))
    secondary_designator: Mapped[str | None] = mapped_column(String(10))
    secondary_number: Mapped[str | None] = mapped_column(String(10))
    city: Mapped[str] = mapped_column(String(50), nullable=False)
    state_or_region: Mapped[str] = mapped_column(String(50), nullable=False)
    zip_or_postal_code: Mapped[str] = mapped_column(String(20), nullable=False)

    latitude: Mapped[Decimal | None] = mapped_column(Numeric(8, 6))
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(9, 6))
    admin_division: Mapped[str] = mapped_column(String(50), nullable=False)
    land_use_type: Mapped[str] = mapped_column(String(50), nullable=False)
    land_use_category: Mapped[str | None] = mapped_column(String(50))  # LandUseType value
    area_sq_ft: Mapped[int | None] = mapped_column(BigInteger)
    nr_bedrooms: Mapped[int | None] = mapped_column(Integer)
    nr_bathrooms: Mapped[Decimal | None] = mapped_column(Numeric(4, 2))
    total_area_sq_ft: Mapped[int | None] = mapped_column(BigInteger)

    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_updated_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return f"<Property {self.apn}: {self.street_number} {self.street_name}>"


class Propensity(Base):
    """A propensity score for a parcel.

    Linked to Property by APN equality at query time only; there is no foreign
    key, so scores may arrive before (or without) their core property.
    """

    __tablename__ = "propensities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    apn: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    score: Mapped[int | None] = mapped_column(SmallInteger)
    zip_or_postal_code: Mapped[str | None] = mapped_column(String(20), index=True)

    created_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_updated_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return f"<Propensity {self.apn}: {self.score}>"
