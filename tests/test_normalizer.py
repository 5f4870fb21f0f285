import json

import pytest

from tripgen.normalizer.itinerary import (
    DEFAULT_COORDINATES,
    derive_budget,
    normalize_itinerary,
    normalize_raw_output,
    repair_coordinates,
    to_number,
)
from tripgen.normalizer.json_repair import (
    ItineraryParseError,
    parse_itinerary_text,
    repair_json_text,
    strip_code_fences,
)

MALFORMED_PARIS = (
    "// comment\n"
    "{destination:'Paris', days:[{activities:[{title:'Tour',cost:'20',"
    "coordinates:{lat:'48.8566',lng:'2.3522'}}]}],}"
)


# JSON recovery


def test_parse_valid_json():
    assert parse_itinerary_text('{"destination": "Rome"}') == {"destination": "Rome"}


def test_parse_extracts_braced_object_from_prose():
    text = 'Here is your itinerary:\n{"destination": "Rome", "days": []}\nEnjoy!'
    assert parse_itinerary_text(text)["destination"] == "Rome"


def test_parse_strips_code_fences():
    text = '```json\n{"destination": "Rome"}\n```'
    assert strip_code_fences(text) == '{"destination": "Rome"}'
    assert parse_itinerary_text(text) == {"destination": "Rome"}


def test_parse_repairs_bare_keys_quotes_and_trailing_commas():
    assert parse_itinerary_text("{title: 'Trip', days: [1,2,],}") == {"title": "Trip", "days": [1, 2]}


def test_repair_strips_comments_but_keeps_urls():
    repaired = repair_json_text('{"url": "https://example.com", /* note */ "a": 1 // trailing\n}')
    assert json.loads(repaired) == {"url": "https://example.com", "a": 1}


def test_parse_failure_carries_first_parser_message():
    with pytest.raises(ItineraryParseError) as excinfo:
        parse_itinerary_text("no json here at all")
    assert "Expecting value" in str(excinfo.value)


def test_parse_rejects_non_object():
    with pytest.raises(ItineraryParseError):
        parse_itinerary_text("[1, 2, 3]")


def test_parse_rejects_empty():
    with pytest.raises(ItineraryParseError):
        parse_itinerary_text("   ")


# Canonicalization


def test_coordinate_repair():
    assert repair_coordinates({"lat": "40.7128", "lng": None}) == {"lat": 40.7128, "lng": DEFAULT_COORDINATES["lng"]}


def test_coordinates_rounded_to_six_decimals():
    coords = repair_coordinates({"lat": 40.712812345, "lng": -74.0059871})
    assert coords == {"lat": 40.712812, "lng": -74.005987}


def test_invalid_coordinates_replaced_by_default():
    assert repair_coordinates("somewhere") == DEFAULT_COORDINATES
    assert repair_coordinates({"lat": float("nan"), "lng": "abc"}) == DEFAULT_COORDINATES
    assert repair_coordinates({"lat": 123.0, "lng": 2.0})["lat"] == DEFAULT_COORDINATES["lat"]


@pytest.mark.parametrize(
    "value, expected",
    [(20, 20), ("20", 20), ("$1,200", 1200), ("12.50 EUR", 12.5), ("Free", 0), (None, 0), (True, 0)],
)
def test_to_number(value, expected):
    assert to_number(value) == expected


def test_days_defaults_to_empty_list():
    itinerary = normalize_itinerary({"destination": "Oslo"})
    assert itinerary["days"] == []
    assert itinerary["title"] == "Trip to Oslo"
    assert itinerary["tripName"] == "Trip to Oslo"
    assert itinerary["summary"] == itinerary["overview"] == "Trip to Oslo"


def test_days_entries_get_list_fields():
    itinerary = normalize_itinerary({"days": [{"day": 1}, "bogus", {"day": 2, "activities": "none"}]})
    assert len(itinerary["days"]) == 2
    for day in itinerary["days"]:
        assert day["activities"] == []
        assert day["meals"] == []


def test_aliases_filled_both_ways():
    itinerary = normalize_itinerary(
        {
            "tripName": "Roman Holiday",
            "summary": "Three days in Rome",
            "budgetEstimate": {"accommodation": "300", "food": 150, "transportation": "40"},
            "dates": {"start": "2025-05-01", "end": "2025-05-03"},
        }
    )
    assert itinerary["title"] == "Roman Holiday"
    assert itinerary["overview"] == "Three days in Rome"
    assert itinerary["budget"] == itinerary["budgetEstimate"]
    assert itinerary["budget"]["transport"] == 40
    assert itinerary["budget"]["total"] == 490
    assert itinerary["startDate"] == "2025-05-01"
    assert itinerary["endDate"] == "2025-05-03"


def test_budget_derived_from_item_costs():
    days = [
        {
            "accommodation": {"name": "Hotel", "cost": "100"},
            "activities": [{"title": "Museum", "cost": 15, "transportCost": "2.5"}],
            "meals": [{"venue": "Cafe", "cost": 20}],
        }
    ]
    itinerary = normalize_itinerary({"days": days})
    assert itinerary["budget"] == {
        "accommodation": 100,
        "food": 20,
        "activities": 15,
        "transport": 2.5,
        "total": 137.5,
        "transportation": 2.5,
    }
    assert itinerary["budgetEstimate"] == itinerary["budget"]
    assert normalize_itinerary(itinerary) == itinerary
    assert derive_budget([]) == {"accommodation": 0, "food": 0, "activities": 0, "transport": 0, "total": 0}


def test_costs_coerced_on_all_items():
    itinerary = normalize_itinerary(
        {
            "days": [
                {
                    "accommodation": {"cost": "$80", "coordinates": {"lat": "1", "lng": "2"}},
                    "activities": [{"title": "Walk"}],
                    "meals": [{"venue": "Bistro", "cost": "25", "transportCost": "3"}],
                }
            ]
        }
    )
    day = itinerary["days"][0]
    assert day["accommodation"]["cost"] == 80
    assert day["accommodation"]["coordinates"] == {"lat": 1.0, "lng": 2.0}
    assert day["activities"][0]["cost"] == 0
    assert day["activities"][0]["transportCost"] == 0
    assert day["meals"][0]["cost"] == 25
    assert "coordinates" not in day["activities"][0]


def test_normalize_does_not_mutate_input():
    data = {"days": [{"activities": [{"cost": "5"}]}]}
    normalize_itinerary(data)
    assert data == {"days": [{"activities": [{"cost": "5"}]}]}


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"destination": "Lisbon", "tripName": "Lisbon", "days": [{"meals": [{"cost": "$12"}]}]},
        {"budget": {"food": "10"}, "startDate": "2025-01-01", "days": "oops"},
        json.loads(json.dumps({"days": [{"activities": [{"coordinates": {"lat": "x", "lng": 200}}]}]})),
    ],
)
def test_normalize_is_idempotent(data):
    once = normalize_itinerary(data)
    twice = normalize_itinerary(once)
    assert json.dumps(once) == json.dumps(twice)


def test_malformed_output_end_to_end():
    itinerary = normalize_raw_output(MALFORMED_PARIS)
    activity = itinerary["days"][0]["activities"][0]
    assert activity["cost"] == 20
    assert activity["coordinates"]["lat"] == 48.8566
    assert activity["coordinates"]["lng"] == 2.3522
    assert itinerary["title"] == "Trip to Paris"
