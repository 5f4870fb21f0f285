import pytest

from tripgen.errors import GENERIC_MESSAGE, describe_failure
from tripgen.generation.invoker import NETWORK_ERROR_MESSAGE
from tripgen.generation.policy import TIMEOUT_MESSAGES


@pytest.mark.parametrize(
    "message, expected",
    [
        (NETWORK_ERROR_MESSAGE, "Network error"),
        (TIMEOUT_MESSAGES[(True, True)], "taking too long"),
        ("OpenAI API error: 500 - internal", "AI service"),
        ("Failed to parse itinerary JSON: Expecting value", "unexpected response format"),
        ("Supabase insert failed", "Database connection error"),
    ],
)
def test_user_message_by_failure_type(message, expected):
    description = describe_failure(message)
    assert expected in description.user_message
    assert description.details == message
    assert description.tips


def test_tips_follow_user_message():
    assert "Disable any VPN or proxy services temporarily" in describe_failure(NETWORK_ERROR_MESSAGE).tips
    assert "Select fewer preference categories" in describe_failure("request timed out").tips
    assert "Wait a few minutes and try again" in describe_failure("OpenAI API error: 429").tips


def test_unknown_and_empty_messages():
    assert describe_failure("something odd").user_message == GENERIC_MESSAGE
    empty = describe_failure(None)
    assert empty.user_message == GENERIC_MESSAGE
    assert empty.details == ""
    assert "Try again in a few minutes" in empty.tips
