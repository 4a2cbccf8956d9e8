import pytest
from sqlalchemy.exc import SQLAlchemyError

import address_propensity.main as main_module
from address_propensity.loader import load_file
from address_propensity.queries import find_address_scores_for_zip_code


@pytest.fixture
def seeded(session_factory, property_csv, property_row, propensity_csv, propensity_row):
    load_file(
        property_csv([
            property_row("1", street_number="10"),
            property_row("2", street_number="20"),
            property_row("3", street_number="30"),
            property_row("4", street_number="40", zip_or_postal_code="98101"),
        ]),
        "property",
        session_factory=session_factory,
    )
    load_file(
        propensity_csv([
            propensity_row("3", "166"),
            propensity_row("1", "259"),
            propensity_row("2", "221"),
            propensity_row("4", "800", zip_code="98101"),
            # Score without a core property
            propensity_row("9", "900"),
        ]),
        "propensity",
        session_factory=session_factory,
    )


# =============================================================================
# Query service
# =============================================================================


def test_ranked_by_score(db, seeded):
    results = find_address_scores_for_zip_code(db, "98121", limit=2)

    assert [r.score for r in results] == [259, 221]
    assert results[0].apn == "00000000000001"
    assert results[0].address.formatted == "10 WESTERN AVE, SEATTLE, WA 98121, USA"


def test_unlinked_scores_are_excluded(db, seeded):
    results = find_address_scores_for_zip_code(db, "98121")

    assert [r.apn for r in results] == ["00000000000001", "00000000000002", "00000000000003"]


def test_unknown_zip_is_empty(db, seeded):
    assert find_address_scores_for_zip_code(db, "10001") == []


def test_ties_by_apn_and_missing_scores_last(db, session_factory, property_csv, property_row, propensity_csv, propensity_row):
    load_file(
        property_csv([property_row(apn) for apn in ("5", "6", "7", "8")]),
        "property",
        session_factory=session_factory,
    )
    load_file(
        propensity_csv([
            propensity_row("8", "400"),
            propensity_row("7", ""),
            propensity_row("6", "400"),
            propensity_row("5", "100"),
        ]),
        "propensity",
        session_factory=session_factory,
    )

    results = find_address_scores_for_zip_code(db, "98121")

    assert [(r.apn[-1], r.score) for r in results] == [("6", 400), ("8", 400), ("5", 100), ("7", None)]


def test_limit_must_be_positive(db):
    with pytest.raises(ValueError):
        find_address_scores_for_zip_code(db, "98121", limit=0)


# =============================================================================
# HTTP endpoints
# =============================================================================


def test_health_check(client):
    assert client.get("/health_check").json() == {"status": "ok"}
    assert client.get("/").status_code == 200


def test_propensity_search(client, seeded):
    response = client.get("/propensity", params={"zip": "98121", "limit": 2})

    assert response.status_code == 200
    body = response.json()
    assert [item["score"] for item in body] == [259, 221]
    address = body[0]["address"]
    assert address["address_line"]["street_name"] == "WESTERN"
    assert address["secondary_address_line"] is None
    assert address["locale"]["iso_3166_alpha_3"] == "USA"
    assert address["formatted"] == "10 WESTERN AVE, SEATTLE, WA 98121, USA"


@pytest.mark.parametrize("param", ["zipcode", "zip_code"])
def test_propensity_search_zip_aliases(client, seeded, param):
    response = client.get("/propensity", params={param: "98101"})

    assert response.status_code == 200
    assert [item["score"] for item in response.json()] == [800]


def test_propensity_search_no_matches(client, seeded):
    response = client.get("/propensity", params={"zip": "10001"})

    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.parametrize("params", [{}, {"zip": ""}, {"zip": "abc"}, {"zip": "9812"}, {"zip": "981210"}])
def test_propensity_search_bad_zip(client, params):
    assert client.get("/propensity", params=params).status_code == 400


@pytest.mark.parametrize("limit", ["0", "-3", "two"])
def test_propensity_search_bad_limit(client, limit):
    response = client.get("/propensity", params={"zip": "98121", "limit": limit})

    assert response.status_code == 422


def test_propensity_search_storage_failure(client, monkeypatch):
    def broken(session, zip_code, limit=None):
        raise SQLAlchemyError("connection refused")

    monkeypatch.setattr(main_module, "find_address_scores_for_zip_code", broken)

    response = client.get("/propensity", params={"zip": "98121"})

    assert response.status_code == 500
