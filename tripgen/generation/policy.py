"""Timeout policy for the generation call.

Mobile clients, long prompts and production deployments each get extra time,
and the message shown on timeout depends on which of those applied.
"""

import re
from dataclasses import dataclass
from typing import Optional

from tripgen.config import Settings, settings as default_settings

MAX_TIMEOUT_INCREMENTS = 3

_MOBILE_UA = re.compile(
    r"Mobi|Android|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini|webOS",
    re.IGNORECASE,
)

TIMEOUT_MESSAGES = {
    (True, True): (
        "Your itinerary request timed out. Detailed itineraries can take longer to generate "
        "on mobile connections. Please try again on a stable Wi-Fi connection or shorten "
        "your trip and reduce your preferences."
    ),
    (True, False): (
        "Your itinerary request timed out. Mobile connections can be slower, so please try "
        "again on a stable Wi-Fi connection."
    ),
    (False, True): (
        "Your itinerary request timed out because it was too detailed to generate in time. "
        "Please try a shorter trip or fewer preferences."
    ),
    (False, False): (
        "Your itinerary request timed out. Our AI service may be busy, please try again in "
        "a few minutes."
    ),
}


def is_mobile_user_agent(user_agent: Optional[str]) -> bool:
    return bool(user_agent) and _MOBILE_UA.search(user_agent) is not None


@dataclass(frozen=True)
class TimeoutContext:
    is_mobile: bool = False
    is_complex: bool = False
    is_production: bool = False

    @classmethod
    def build(
        cls,
        prompt: str,
        user_agent: Optional[str] = None,
        settings: Settings = default_settings,
    ) -> "TimeoutContext":
        return cls(
            is_mobile=is_mobile_user_agent(user_agent),
            is_complex=len(prompt) > settings.complex_prompt_threshold,
            is_production=settings.is_production,
        )


@dataclass(frozen=True)
class TimeoutPlan:
    timeout_s: float
    message: str


def resolve_timeout(context: TimeoutContext, settings: Settings = default_settings) -> TimeoutPlan:
    """Map a timeout context to a deadline and its user-facing timeout message."""
    increments = sum((context.is_production, context.is_mobile, context.is_complex))
    timeout_s = settings.generation_base_timeout_s + settings.generation_timeout_increment_s * min(
        increments, MAX_TIMEOUT_INCREMENTS
    )
    message = TIMEOUT_MESSAGES[(context.is_mobile, context.is_complex)]
    return TimeoutPlan(timeout_s=timeout_s, message=message)
