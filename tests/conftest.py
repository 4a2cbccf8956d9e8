import csv
import os

# Keep the package's default engine off any real database
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from address_propensity import models  # noqa: F401
from address_propensity.database import Base, get_db
from address_propensity.main import app

PROPERTY_HEADER = [
    "apn",
    "street_number",
    "street_pre_direction",
    "street_name",
    "street_suffix",
    "street_post_direction",
    "secondary_designator",
    "secondary_number",
    "city",
    "state_or_region",
    "zip_or_postal_code",
    "latitude",
    "longitude",
    "admin_division",
    "land_use_type",
    "area_sq_ft",
    "nr_bedrooms",
    "nr_bathrooms",
    "total_area_sq_ft",
]

PROPENSITY_HEADER = ["apn", "zip_or_postal_code", "score"]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def property_row():
    def make(apn, **overrides):
        row = {
            "apn": apn,
            "street_number": "2200",
            "street_pre_direction": "",
            "street_name": "Western",
            "street_suffix": "Ave",
            "street_post_direction": "",
            "secondary_designator": "",
            "secondary_number": "",
            "city": "Seattle",
            "state_or_region": "WA",
            "zip_or_postal_code": "98121",
            "latitude": "47.614200",
            "longitude": "-122.345600",
            "admin_division": "King",
            "land_use_type": "Single Family Residential",
            "area_sq_ft": "1850",
            "nr_bedrooms": "3",
            "nr_bathrooms": "2.5",
            "total_area_sq_ft": "4200",
        }
        row.update(overrides)
        return row

    return make


@pytest.fixture
def propensity_row():
    def make(apn, score, zip_code="98121"):
        return {"apn": apn, "zip_or_postal_code": zip_code, "score": score}

    return make


@pytest.fixture
def write_csv(tmp_path):
    def write(name, header, rows):
        path = tmp_path / name
        with open(path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=header)
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
        return path

    return write


@pytest.fixture
def property_csv(write_csv):
    def write(rows, name="properties.csv"):
        return write_csv(name, PROPERTY_HEADER, rows)

    return write


@pytest.fixture
def propensity_csv(write_csv):
    def write(rows, name="propensity.csv"):
        return write_csv(name, PROPENSITY_HEADER, rows)

    return write
