"""Ranked propensity lookups."""

from sqlalchemy import nulls_last, select
from sqlalchemy.orm import Session

from .models import Propensity, Property
from .schemas import Address, PropensitySearchItem


def property_address(prop: Property) -> Address:
    return Address.in_usa(
        street_number=prop.street_number,
        street_pre_direction=prop.street_pre_direction,
        street_name=prop.street_name,
        street_suffix=prop.street_suffix,
        street_post_direction=prop.street_post_direction,
        secondary_designator=prop.secondary_designator,
        secondary_number=prop.secondary_number,
        city=prop.city,
        state_or_region=prop.state_or_region,
        zip_or_postal_code=prop.zip_or_postal_code,
    )


def find_address_scores_for_zip_code(
    session: Session,
    zip_code: str,
    limit: int | None = None,
) -> list[PropensitySearchItem]:
    """Highest propensity scores in a zip code, with property addresses.

    Zip membership comes from the propensity record. Scores without a
    matching property are left out. Ties are ordered by APN and records
    without a score sort last. ``limit=None`` returns every match.
    """
    if limit is not None and limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")

    stmt = (
        select(Propensity.apn, Propensity.score, Property)
        .join(Property, Property.apn == Propensity.apn)
        .where(Propensity.zip_or_postal_code == zip_code)
        .order_by(nulls_last(Propensity.score.desc()), Propensity.apn.asc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)

    return [
        PropensitySearchItem(apn=row.apn, score=row.score, address=property_address(row.Property))
        for row in session.execute(stmt)
    ]
