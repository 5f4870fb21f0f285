"""Canonicalize a parsed itinerary into the shape the rest of the system expects.

Normalization repairs and defaults rather than rejecting: whatever JSON object
comes in, the output has a ``days`` list, numeric costs, valid coordinates and
both spellings of every aliased field. Running it twice gives the same result.
"""

import copy
import logging
import math
import re
from typing import Any, Dict, List, Optional

from tripgen.normalizer.json_repair import parse_itinerary_text

logger = logging.getLogger(__name__)

# Used when a coordinate is missing or unusable (Paris)
DEFAULT_COORDINATES = {"lat": 48.8566, "lng": 2.3522}
COORDINATE_PRECISION = 6  # ~0.11 m

FIELD_ALIASES = (
    ("overview", "summary"),
    ("tripName", "title"),
    ("budgetEstimate", "budget"),
)
BUDGET_ALIASES = (("transportation", "transport"),)
BUDGET_COMPONENTS = ("accommodation", "food", "activities", "transport")
COST_FIELDS = ("cost", "transportCost")

_NUMBER = re.compile(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?")


def to_number(value: Any, default: float = 0) -> float:
    """Coerce a cost-like value to a number: ``"$1,200"`` -> 1200, ``"Free"`` -> default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _NUMBER.search(value.replace(",", ""))
        if not match:
            return default
        number = float(match.group(0))
    else:
        return default
    if not math.isfinite(number):
        return default
    return int(number) if number.is_integer() else number


def _coordinate(value: Any, limit: float) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number) or abs(number) > limit:
        return None
    return number


def repair_coordinates(coords: Any) -> Dict[str, Any]:
    """Return coordinates with finite lat/lng rounded to 6 decimals.

    Numeric strings are converted; each missing or invalid component is
    replaced by the matching component of ``DEFAULT_COORDINATES``.
    """
    if not isinstance(coords, dict):
        return dict(DEFAULT_COORDINATES)
    lat = _coordinate(coords.get("lat"), 90.0)
    lng = _coordinate(coords.get("lng"), 180.0)
    if lat is None:
        lat = DEFAULT_COORDINATES["lat"]
    if lng is None:
        lng = DEFAULT_COORDINATES["lng"]
    repaired = dict(coords)
    repaired["lat"] = round(lat, COORDINATE_PRECISION)
    repaired["lng"] = round(lng, COORDINATE_PRECISION)
    return repaired


def _normalize_entry(entry: Dict[str, Any], default_costs: bool) -> Dict[str, Any]:
    if "coordinates" in entry:
        entry["coordinates"] = repair_coordinates(entry["coordinates"])
    for field in COST_FIELDS:
        if field in entry or default_costs:
            entry[field] = to_number(entry.get(field))
    return entry


def _normalize_entries(value: Any, default_costs: bool) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [_normalize_entry(item, default_costs) for item in value if isinstance(item, dict)]


def _normalize_day(day: Dict[str, Any]) -> Dict[str, Any]:
    day["activities"] = _normalize_entries(day.get("activities"), default_costs=True)
    day["meals"] = _normalize_entries(day.get("meals"), default_costs=True)
    accommodation = day.get("accommodation")
    if isinstance(accommodation, dict):
        day["accommodation"] = _normalize_entry(accommodation, default_costs=False)
    elif isinstance(accommodation, list):
        day["accommodation"] = _normalize_entries(accommodation, default_costs=False)
    return day


def _copy_aliases(data: Dict[str, Any], pairs) -> None:
    for first, second in pairs:
        if first in data and second not in data:
            data[second] = copy.deepcopy(data[first])
        elif second in data and first not in data:
            data[first] = copy.deepcopy(data[second])


def _accommodation_costs(day: Dict[str, Any]) -> float:
    accommodation = day.get("accommodation")
    if isinstance(accommodation, dict):
        return to_number(accommodation.get("cost"))
    if isinstance(accommodation, list):
        return sum(to_number(a.get("cost")) for a in accommodation)
    return 0


def _round_sum(value: float) -> float:
    value = round(value, 2)
    return int(value) if float(value).is_integer() else value


def derive_budget(days: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Build a budget from the costs listed in the itinerary's days."""
    accommodation = food = activities = transport = 0.0
    for day in days:
        accommodation += _accommodation_costs(day)
        for meal in day.get("meals", []):
            food += to_number(meal.get("cost"))
            transport += to_number(meal.get("transportCost"))
        for activity in day.get("activities", []):
            activities += to_number(activity.get("cost"))
            transport += to_number(activity.get("transportCost"))
    budget = {
        "accommodation": _round_sum(accommodation),
        "food": _round_sum(food),
        "activities": _round_sum(activities),
        "transport": _round_sum(transport),
    }
    budget["total"] = _round_sum(sum(budget.values()))
    return budget


def _normalize_budget(budget: Dict[str, Any]) -> Dict[str, Any]:
    _copy_aliases(budget, BUDGET_ALIASES)
    for key in BUDGET_COMPONENTS + ("transportation", "total"):
        if key in budget:
            budget[key] = to_number(budget[key])
    if not budget.get("total"):
        budget["total"] = _round_sum(sum(budget.get(key, 0) for key in BUDGET_COMPONENTS))
    return budget


def _normalize_dates(data: Dict[str, Any]) -> None:
    dates = data.get("dates")
    if isinstance(dates, dict):
        if "start" not in dates and "startDate" in data:
            dates["start"] = data["startDate"]
        if "end" not in dates and "endDate" in data:
            dates["end"] = data["endDate"]
        if "start" in dates and "startDate" not in data:
            data["startDate"] = dates["start"]
        if "end" in dates and "endDate" not in data:
            data["endDate"] = dates["end"]
    elif "startDate" in data or "endDate" in data:
        data["dates"] = {}
        if "startDate" in data:
            data["dates"]["start"] = data["startDate"]
        if "endDate" in data:
            data["dates"]["end"] = data["endDate"]


def normalize_itinerary(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a canonical copy of a parsed itinerary. Never fails on content."""
    if not isinstance(data, dict):
        raise TypeError(f"Itinerary must be a JSON object, got {type(data).__name__}")
    itinerary = copy.deepcopy(data)

    days = itinerary.get("days")
    if not isinstance(days, list):
        if days is not None:
            logger.warning("Itinerary 'days' is %s, replacing with empty list", type(days).__name__)
        days = []
    itinerary["days"] = [_normalize_day(day) for day in days if isinstance(day, dict)]

    destination = itinerary.get("destination") or "Destination"
    if "title" not in itinerary and "tripName" not in itinerary:
        itinerary["title"] = f"Trip to {destination}"
    if "summary" not in itinerary and "overview" not in itinerary:
        itinerary["summary"] = f"Trip to {destination}"

    for key in ("budget", "budgetEstimate"):
        if isinstance(itinerary.get(key), dict):
            itinerary[key] = _normalize_budget(itinerary[key])
    if not isinstance(itinerary.get("budget"), dict) and not isinstance(itinerary.get("budgetEstimate"), dict):
        itinerary.pop("budget", None)
        itinerary.pop("budgetEstimate", None)
        itinerary["budget"] = _normalize_budget(derive_budget(itinerary["days"]))

    _copy_aliases(itinerary, FIELD_ALIASES)
    _normalize_dates(itinerary)
    return itinerary


def normalize_raw_output(raw: str) -> Dict[str, Any]:
    """Parse and canonicalize raw model output. Raises ``ItineraryParseError``."""
    return normalize_itinerary(parse_itinerary_text(raw))
