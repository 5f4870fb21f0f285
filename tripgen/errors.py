"""User-facing descriptions of job failures."""

from dataclasses import dataclass, field
from typing import List, Optional

GENERIC_MESSAGE = "An unexpected error occurred"

COMMON_TIPS = [
    "Check your internet connection and try again",
    "If the error persists, our AI service might be experiencing high demand",
]


@dataclass
class FailureDescription:
    user_message: str
    details: str = ""
    tips: List[str] = field(default_factory=list)


def _user_message(message: str) -> str:
    lowered = message.lower()
    if "supabase" in lowered or "database" in lowered:
        return "Database connection error. Please try again in a moment."
    if "network" in lowered or "failed to fetch" in lowered or "internet connection" in lowered:
        return "Network error: Please check your internet connection and try again."
    if "timeout" in lowered or "timed out" in lowered:
        return (
            "Your itinerary is taking too long to generate. "
            "Please try a simpler itinerary or try again later."
        )
    if "openai api" in lowered or "ai service" in lowered or "no content" in lowered:
        return "There was an issue with our AI service. Please try again later."
    if "parse" in lowered or "json" in lowered or "invalid response" in lowered:
        return "We received an unexpected response format. Please try again."
    if "itinerary" in lowered:
        return "We had trouble creating your itinerary. Please try again or modify your preferences."
    return GENERIC_MESSAGE


def troubleshooting_tips(user_message: str) -> List[str]:
    lowered = user_message.lower()
    if "network" in lowered or "connection" in lowered:
        return [
            "Check that you have a stable internet connection",
            "Try refreshing your browser or restarting your device",
            "Disable any VPN or proxy services temporarily",
            *COMMON_TIPS,
        ]
    if "timeout" in lowered or "too long" in lowered:
        return [
            "Try simplifying your request by shortening the trip duration",
            "Choose more common destinations with better data availability",
            "Select fewer preference categories",
            *COMMON_TIPS,
        ]
    if "ai service" in lowered or "unexpected response" in lowered:
        return [
            "Our AI service might be experiencing issues",
            "Wait a few minutes and try again",
            "Try a different destination or time period",
            *COMMON_TIPS,
        ]
    return [
        "Try simplifying your request by shortening the trip duration",
        "Choose more common destinations with better data availability",
        "Try again in a few minutes",
        *COMMON_TIPS,
    ]


def describe_failure(message: Optional[str]) -> FailureDescription:
    """Turn a raw failure message into user text, the raw details and tips."""
    details = (message or "").strip()
    user_message = _user_message(details) if details else GENERIC_MESSAGE
    return FailureDescription(
        user_message=user_message,
        details=details,
        tips=troubleshooting_tips(user_message),
    )
