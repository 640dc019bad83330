from datetime import date

import pytest

from london_crime.common.constants import NO_OUTCOME
from london_crime.harvest.partition_fetcher import parse_crime
from london_crime.pipeline.standardize import (
    CATEGORY_RULES,
    standardize,
    standardize_category,
    standardize_outcome,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Anti-social behaviour", "anti-social-behaviour"),
        ("  BICYCLE THEFT ", "bicycle-theft"),
        ("Burglary", "burglary"),
        ("Criminal damage and arson", "criminal-damage-arson"),
        ("Drugs", "drugs"),
        ("Other theft", "other-theft"),
        ("Possession of weapons", "possession-of-weapons"),
        ("Public order", "public-order"),
        ("Robbery", "robbery"),
        ("Shoplifting", "shoplifting"),
        ("Theft from the person", "theft-from-the-person"),
        ("Vehicle crime", "vehicle-crime"),
        ("Violence and sexual offences", "violence-and-sexual-offences"),
        ("Other crime", "other-crime"),
    ],
)
def test_category_rules_map_exactly(raw, expected):
    assert standardize_category(raw) == expected


def test_first_matching_rule_wins():
    # Contains both "burglary" and "robbery"; burglary is listed first.
    assert standardize_category("Robbery during burglary") == "burglary"
    assert [needle for needle, _ in CATEGORY_RULES].index("burglary") < [
        needle for needle, _ in CATEGORY_RULES
    ].index("robbery")


def test_unknown_category_passes_through_lowercased():
    assert standardize_category("  Violent-Crime ") == "violent-crime"
    assert standardize_category("   ") is None


def test_blank_outcome_maps_to_sentinel():
    assert standardize_outcome(None) == NO_OUTCOME
    assert standardize_outcome("  ") == NO_OUTCOME
    assert standardize_outcome(" Under investigation ") == "under investigation"


def test_standardize_derives_calendar_fields_and_drops_malformed(api_crime):
    raw = [
        parse_crime(api_crime("b", category="Burglary", month="2024-05", outcome="Unable to prosecute suspect"), "2024-05"),
        parse_crime(api_crime("a", category="Anti-social behaviour", month="2024-05"), "2024-05"),
        {"crime_id": "bad-lat", "category": "drugs", "latitude": "n/a", "longitude": "-0.1", "month": "2024-05"},
        {"crime_id": "bad-range", "category": "drugs", "latitude": "95", "longitude": "-0.1", "month": "2024-05"},
        {"crime_id": "bad-date", "category": "drugs", "latitude": "51.5", "longitude": "-0.1", "month": "May 2024"},
        {"crime_id": None, "category": "drugs", "latitude": "51.5", "longitude": "-0.1", "month": "2024-05"},
    ]

    result = standardize(raw, "2024-05")

    assert [r["crime_id"] for r in result.records] == ["a", "b"]
    assert result.dropped_count == 4
    assert result.drop_reasons == {"bad_coordinates": 2, "bad_date": 1, "missing_crime_id": 1}
    first = result.records[0]
    assert first["event_date"] == date(2024, 5, 1)
    assert (first["year"], first["month_number"], first["quarter"]) == (2024, 5, 2)
    assert first["outcome_category"] == NO_OUTCOME
    assert first["location_type"] == "force"
    assert first["location_subtype"] is None
    assert result.records[1]["outcome_category"] == "unable to prosecute suspect"


def test_standardize_reports_unknown_categories(api_crime, caplog):
    raw = [parse_crime(api_crime("x", category="Novel offence"), "2024-03")]

    with caplog.at_level("WARNING"):
        result = standardize(raw, "2024-03")

    assert result.records[0]["category"] == "novel offence"
    assert result.unknown_categories == {"novel offence": 1}
    assert "outside the standard vocabulary" in caplog.text


def test_standardize_orders_by_date_then_category():
    raw = [
        {"crime_id": "1", "category": "robbery", "latitude": "51.5", "longitude": "-0.1", "month": "2024-03"},
        {"crime_id": "2", "category": "burglary", "latitude": "51.5", "longitude": "-0.1", "month": "2024-03"},
        {"crime_id": "3", "category": "arson", "latitude": "51.5", "longitude": "-0.1", "month": "2024-02"},
    ]

    result = standardize(raw, "2024-03")

    assert [r["crime_id"] for r in result.records] == ["3", "2", "1"]


def test_parse_crime_falls_back_to_numeric_id_for_blank_persistent_id(api_crime):
    crime = api_crime("")
    crime["id"] = 12345

    assert parse_crime(crime, "2024-03")["crime_id"] == "id-12345"
