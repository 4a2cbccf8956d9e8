"""Load property and propensity CSV files into the database.

Rows are processed one at a time in file order:
1. Map the raw row (normalize the APN, validate fields, collect findings)
2. Look up an existing record by normalized APN; skip if present
3. Insert the new record and commit

A file can be re-run after upstream fixes: rows loaded earlier are skipped,
so nothing is duplicated. Per-row problems never stop the run; only an
unreadable file, an unreachable database or an interrupt does.

Usage:
    address-propensity-loader property data/properties.csv
    address-propensity-loader propensity data/propensity.csv
    address-propensity-loader --init-db --database-url sqlite:///local.db property data/properties.csv
"""

import argparse
import csv
import logging
import os
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import logfire
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import SessionLocal, init_db, make_session_factory
from .models import Propensity, Property
from .transformations import (
    NOT_IN_CORE_PROPERTIES,
    Finding,
    IngestionSummary,
    MappedRow,
    PropensityRecord,
    PropertyRecord,
    map_propensity_row,
    map_property_row,
)

logger = logging.getLogger(__name__)

# Errors meaning the database itself is gone, not just one bad row
FATAL_STORAGE_ERRORS = (OperationalError, InterfaceError)

LOOKUP_FAILURE = "lookup failure"
SAVE_FAILURE = "save failure"

# How many skipped row indexes the CLI prints
SKIPPED_ROWS_SHOWN = 10


class IngestionAborted(Exception):
    """A load stopped early. Carries the summary of work done so far."""

    def __init__(self, message: str, summary: IngestionSummary):
        super().__init__(message)
        self.summary = summary


# =============================================================================
# Record Builders
# =============================================================================


def build_property(record: PropertyRecord, now: datetime) -> Property:
    address = record.address
    line = address.address_line
    secondary = address.secondary_address_line
    geo = record.geo_coordinate

    return Property(
        apn=record.apn,
        street_number=line.street_number,
        street_pre_direction=line.street_pre_direction,
        street_name=line.street_name,
        street_suffix=line.street_suffix,
        street_post_direction=line.street_post_direction,
        secondary_designator=secondary.designator if secondary else None,
        secondary_number=secondary.number if secondary else None,
        city=address.city,
        state_or_region=address.state_or_region,
        zip_or_postal_code=address.zip_or_postal_code,
        latitude=geo.latitude if geo else None,
        longitude=geo.longitude if geo else None,
        admin_division=record.admin_division,
        land_use_type=record.land_use_type,
        land_use_category=record.land_use_category.value if record.land_use_category else None,
        area_sq_ft=record.area_sq_ft,
        nr_bedrooms=record.nr_bedrooms,
        nr_bathrooms=record.nr_bathrooms,
        total_area_sq_ft=record.total_area_sq_ft,
        created_on=now,
        last_updated_on=now,
    )


def build_propensity(record: PropensityRecord, now: datetime) -> Propensity:
    return Propensity(
        apn=record.apn,
        score=record.score,
        zip_or_postal_code=record.zip_or_postal_code,
        created_on=now,
        last_updated_on=now,
    )


# =============================================================================
# Storage Lookups
# =============================================================================


def find_existing(session: Session, model: type, apn: str) -> int | None:
    """Return the id of the stored record with this APN, if any."""
    return session.scalar(select(model.id).where(model.apn == apn).limit(1))


def check_core_property(session: Session, mapped: MappedRow) -> list[Finding]:
    """Propensity scores should refer to a known property."""
    if find_existing(session, Property, mapped.key) is not None:
        return []
    return [
        Finding(
            field="apn",
            issue=NOT_IN_CORE_PROPERTIES,
            detail=f"no property with APN {mapped.key}",
        )
    ]


def is_unique_violation(exc: IntegrityError) -> bool:
    code = getattr(exc.orig, "pgcode", None)
    if code is not None:
        return code == "23505"
    return "unique" in str(exc.orig).lower()


# =============================================================================
# Load Targets
# =============================================================================


@dataclass(frozen=True)
class LoadTarget:
    entity: str
    model: type
    map_row: Callable[[Mapping], MappedRow]
    build: Callable[[object, datetime], object]
    link_check: Callable[[Session, MappedRow], list[Finding]] | None = None


TARGETS: dict[str, LoadTarget] = {
    "property": LoadTarget(
        entity="property",
        model=Property,
        map_row=map_property_row,
        build=build_property,
    ),
    "propensity": LoadTarget(
        entity="propensity",
        model=Propensity,
        map_row=map_propensity_row,
        build=build_propensity,
        link_check=check_core_property,
    ),
}


# =============================================================================
# Pipeline
# =============================================================================


def process_row(
    session_factory: sessionmaker,
    target: LoadTarget,
    index: int,
    row: Mapping,
    summary: IngestionSummary,
) -> None:
    """Map, dedupe and store one row, recording its outcome in the summary."""
    summary.records_processed += 1
    mapped = target.map_row(row)

    if mapped.key_failed:
        logger.warning(f"{target.entity} record[{index}] has no usable APN - skipping: {mapped.issues}")
        summary.record_issues(mapped.findings)
        summary.skip(index)
        return

    if mapped.blocked:
        logger.warning(f"{target.entity} record[{index}] apn={mapped.key} rejected: {mapped.issues}")
        summary.record_issues(mapped.findings)
        summary.records_rejected += 1
        return

    with session_factory() as session:
        findings = list(mapped.findings)
        try:
            if find_existing(session, target.model, mapped.key) is not None:
                logger.debug(f"{target.entity} record[{index}] apn={mapped.key} already loaded - skipping")
                summary.skip(index)
                return
        except FATAL_STORAGE_ERRORS:
            raise
        except SQLAlchemyError as e:
            logger.error(f"{target.entity} record[{index}] apn={mapped.key} lookup failed: {e}")
            summary.record_issues([Finding(field="apn", issue=LOOKUP_FAILURE, detail=str(e))])
            summary.skip(index)
            return

        if target.link_check is not None:
            try:
                findings.extend(target.link_check(session, mapped))
            except FATAL_STORAGE_ERRORS:
                raise
            except SQLAlchemyError as e:
                # Unresolved link never blocks the insert
                session.rollback()
                logger.warning(f"{target.entity} record[{index}] apn={mapped.key} link check failed: {e}")
                findings.append(
                    Finding(field="apn", issue=NOT_IN_CORE_PROPERTIES, detail=f"link check failed: {e}")
                )

        if findings:
            logger.info(f"{target.entity} record[{index}] apn={mapped.key} has issues: {[f.issue for f in findings]}")
        summary.record_issues(findings)

        session.add(target.build(mapped.record, datetime.now(timezone.utc)))
        try:
            session.commit()
        except FATAL_STORAGE_ERRORS:
            raise
        except IntegrityError as e:
            session.rollback()
            if not is_unique_violation(e):
                logger.error(f"{target.entity} record[{index}] apn={mapped.key} save failed: {e.orig}")
                summary.record_issues([Finding(field="apn", issue=SAVE_FAILURE, detail=str(e.orig))])
            else:
                logger.info(f"{target.entity} record[{index}] apn={mapped.key} stored concurrently - skipping")
            summary.skip(index)
            return
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"{target.entity} record[{index}] apn={mapped.key} save failed: {e}")
            summary.record_issues([Finding(field="apn", issue=SAVE_FAILURE, detail=str(e))])
            summary.skip(index)
            return

    logger.debug(f"{target.entity} record[{index}] apn={mapped.key} saved")
    summary.records_saved += 1


def probe_storage(session_factory: sessionmaker, summary: IngestionSummary) -> None:
    try:
        with session_factory() as session:
            session.execute(select(1))
    except SQLAlchemyError as e:
        raise IngestionAborted(f"Cannot reach database: {e}", summary) from e


def load_file(
    path: str | Path,
    target: LoadTarget | str,
    session_factory: sessionmaker = SessionLocal,
    on_row: Callable[[int], None] | None = None,
) -> IngestionSummary:
    """Load every row of a CSV file into the target table.

    Args:
        path: CSV file with a header row
        target: A LoadTarget or its entity name ("property" / "propensity")
        session_factory: Where to store records
        on_row: Called with the 1-based row index after each row

    Returns:
        The run summary

    Raises:
        IngestionAborted: The file could not be read, the database became
            unreachable or the run was interrupted. Rows committed before
            that point stay stored.
    """
    if isinstance(target, str):
        target = TARGETS[target]
    path = Path(path)
    summary = IngestionSummary(source=str(path), entity=target.entity)
    logger.info(f"Loading {target.entity} records from {path}")

    try:
        handle = open(path, newline="", encoding="utf-8-sig")
    except OSError as e:
        raise IngestionAborted(f"Cannot open {path}: {e}", summary) from e

    with handle:
        try:
            probe_storage(session_factory, summary)
            for index, row in enumerate(csv.DictReader(handle), start=1):
                process_row(session_factory, target, index, row, summary)
                if on_row is not None:
                    on_row(index)
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            raise IngestionAborted(f"Cannot read {path}: {e}", summary) from e
        except FATAL_STORAGE_ERRORS as e:
            raise IngestionAborted(f"Database unavailable: {e}", summary) from e
        except KeyboardInterrupt as e:
            summary.interrupted = True
            raise IngestionAborted("Load interrupted", summary) from e

    if summary.nr_issues:
        logger.warning(summary.render())
    else:
        logger.info(summary.render())
    return summary


# =============================================================================
# CLI
# =============================================================================


def count_rows(path: Path) -> int | None:
    """Data rows in a CSV file, for the progress bar."""
    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            return max(sum(1 for _ in csv.reader(f)) - 1, 0)
    except (OSError, csv.Error, UnicodeDecodeError):
        return None


def configure_logging(level: str, console: Console) -> None:
    handlers: list[logging.Handler] = [RichHandler(console=console, show_path=False)]
    if os.getenv("LOGFIRE_TOKEN"):
        logfire.configure()
        handlers.append(logfire.LogfireLoggingHandler())
    logging.basicConfig(level=level.upper(), format="%(name)s: %(message)s", handlers=handlers)


def print_summary(console: Console, summary: IngestionSummary) -> None:
    console.print(summary.render(), style="bold", markup=False, highlight=False)
    if summary.skipped_rows:
        shown = ", ".join(str(i) for i in summary.skipped_rows[:SKIPPED_ROWS_SHOWN])
        more = len(summary.skipped_rows) - SKIPPED_ROWS_SHOWN
        suffix = f" (+{more} more)" if more > 0 else ""
        console.print(f"Skipped rows: {shown}{suffix}", markup=False, highlight=False)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Load property or propensity data from a CSV file")
    parser.add_argument("--database-url", help="Database to load into (default: DATABASE_URL)")
    parser.add_argument("--init-db", action="store_true", help="Create tables before loading")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="entity", required=True)
    subparsers.add_parser("property", help="Load core property data").add_argument(
        "file", type=Path, help="Property CSV file"
    )
    subparsers.add_parser("propensity", help="Load propensity scores").add_argument(
        "file", type=Path, help="Propensity CSV file"
    )
    args = parser.parse_args(argv)

    console = Console(stderr=True)
    configure_logging(args.log_level, console)

    session_factory = make_session_factory(args.database_url) if args.database_url else SessionLocal
    if args.init_db:
        try:
            init_db(session_factory.kw["bind"])
        except SQLAlchemyError as e:
            console.print(f"Cannot initialize database: {e}", style="bold red", markup=False)
            return 1

    console.print(f"Loading {args.entity} records from {args.file}", markup=False)

    aborted = None
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(f"{args.entity} rows", total=count_rows(args.file))
        try:
            summary = load_file(
                args.file,
                args.entity,
                session_factory=session_factory,
                on_row=lambda _: progress.advance(task),
            )
        except IngestionAborted as e:
            aborted = e
            summary = e.summary

    if aborted is not None:
        console.print(f"Failure in {args.entity} loading: {aborted}", style="bold red", markup=False)
        print_summary(console, summary)
        return 1

    print_summary(console, summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
