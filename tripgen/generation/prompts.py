"""Prompt construction for itinerary generation."""

from datetime import date

from tripgen.jobs.models import TripRequest

SYSTEM_PROMPT = (
    "You are an expert travel planner with deep knowledge of destinations worldwide. "
    "Generate a personalized travel itinerary based on the user's preferences. "
    "Return your response in a structured JSON format only, with no additional text. "
    "Ensure all property names use double quotes. "
    'Every location MUST include high-precision "coordinates" with "lat" and "lng" '
    "numerical values with exactly 6 decimal places for accuracy. "
    "For cost fields, use numerical values only without currency symbols. "
    "Consider the typical weather for the destination at the time of the trip and include "
    "appropriate recommendations, with at least one travel tip specifically about the weather. "
    "For longer trips, vary the daily structure - not every day needs to be packed with "
    "activities, and breakfast is only included when there are notable breakfast places nearby. "
    "Group activities that are geographically close to minimize travel time."
)

BUDGET_GUIDELINES = {
    "budget": "Include hostels, street food, free/low-cost activities",
    "moderate": "Include mid-range hotels, casual restaurants, affordable attractions",
    "luxury": "Include high-end hotels, fine dining, premium experiences",
}
DEFAULT_BUDGET_GUIDELINE = "Include a mix of options appropriate for a moderate budget"

_ITINERARY_TEMPLATE = """
Create a personalized travel itinerary for {destination} from {start} to {end} ({days} days).

Tailor this itinerary for the traveler. Their purpose of the trip is {purpose}. Their budget is {budget} ({guidelines}). {likes}
{special_requests}

For longer trips, vary the daily structure - not every day needs to be packed with activities. Some days can have fewer activities than others, and breakfast is only needed when there are notable breakfast places nearby. When activities are in the same area, group them together on the same day to minimize travel time.

Return a JSON itinerary with this structure:
{{
  "destination": "City, Country",
  "tripName": "Short title",
  "overview": "Brief summary",
  "startDate": "{start_iso}",
  "endDate": "{end_iso}",
  "duration": {days},
  "travelTips": ["2-4 essential tips for this destination, including 1 tip specifically about the typical weather during this time of year and any recommended preparations"],
  "days": [
    {{
      "day": 1,
      "date": "YYYY-MM-DD",
      "accommodation": {{
        "name": "Hotel/hostel/rental name",
        "description": "Brief description",
        "cost": number,
        "coordinates": {{"lat": number, "lng": number}}
      }},
      "activities": [
        {{
          "time": "Morning/Afternoon/Evening/Night",
          "title": "Activity name",
          "description": "Brief description",
          "cost": number,
          "transportMode": "Walk/Bus/Metro/Taxi/Train",
          "transportCost": number,
          "coordinates": {{"lat": number, "lng": number}}
        }}
      ],
      "meals": [
        {{
          "type": "Breakfast/Lunch/Dinner",
          "venue": "Restaurant name",
          "description": "Brief description",
          "cost": number,
          "transportMode": "Walk/Bus/Metro/Taxi/Train",
          "transportCost": number,
          "coordinates": {{"lat": number, "lng": number}}
        }}
      ]
    }}
  ]
}}

IMPORTANT GUIDELINES:
1. Return only valid JSON. Do not include any extra text, markdown, or explanation.
2. All coordinates must be numeric values with exactly 6 decimal places (e.g., 40.123456, -74.123456).
3. All costs must be numbers only, with no currency symbols.
4. Each day must include both activities and meals.
5. Use real places that currently exist and are appropriate for the destination and traveler's preferences.
6. Group activities and meals geographically to minimize travel time; each day should follow a logical flow.
7. Include correct transportMode and transportCost for each activity and meal.
8. Ensure that travel tips include one tip specifically about the typical weather during the trip and how to prepare for it.
9. If days have a similar structure, feel free to reuse the pattern with realistic local variation."""


def format_trip_date(value: date) -> str:
    """Format a date as e.g. ``March 21st, 2025``."""
    day = value.day
    if day in (1, 21, 31):
        suffix = "st"
    elif day in (2, 22):
        suffix = "nd"
    elif day in (3, 23):
        suffix = "rd"
    else:
        suffix = "th"
    return f"{value.strftime('%B')} {day}{suffix}, {value.year}"


def budget_guidelines(budget: str) -> str:
    return BUDGET_GUIDELINES.get(budget.strip().lower(), DEFAULT_BUDGET_GUIDELINE)


def build_prompt(request: TripRequest) -> str:
    """Render the user prompt for a trip request."""
    likes = f"They like {', '.join(request.preferences)}" if request.preferences else ""
    special = (request.special_requests or "").strip()
    special_requests = f'\nSpecial requests from the traveler: "{special}"' if special else ""
    return _ITINERARY_TEMPLATE.format(
        destination=request.destination,
        start=format_trip_date(request.start_date),
        end=format_trip_date(request.end_date),
        days=request.trip_days,
        purpose=request.purpose,
        budget=request.budget,
        guidelines=budget_guidelines(request.budget),
        likes=likes,
        special_requests=special_requests,
        start_iso=request.start_date.isoformat(),
        end_iso=request.end_date.isoformat(),
    )
