import pytest

from tripgen.generation.policy import (
    TIMEOUT_MESSAGES,
    TimeoutContext,
    is_mobile_user_agent,
    resolve_timeout,
)

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/124.0 Safari/537.36"


def test_mobile_detection():
    assert is_mobile_user_agent(IPHONE_UA)
    assert is_mobile_user_agent("Mozilla/5.0 (Linux; Android 14; Pixel 8)")
    assert not is_mobile_user_agent(DESKTOP_UA)
    assert not is_mobile_user_agent(None)


def test_base_timeout(settings):
    plan = resolve_timeout(TimeoutContext(), settings)
    assert plan.timeout_s == 60
    assert plan.message == TIMEOUT_MESSAGES[(False, False)]


def test_mobile_complex_production_timeout(settings):
    plan = resolve_timeout(TimeoutContext(is_mobile=True, is_complex=True, is_production=True), settings)
    assert plan.timeout_s == 150
    assert plan.message == TIMEOUT_MESSAGES[(True, True)]


@pytest.mark.parametrize(
    "context, expected",
    [
        (TimeoutContext(is_production=True), 90),
        (TimeoutContext(is_mobile=True), 90),
        (TimeoutContext(is_complex=True), 90),
        (TimeoutContext(is_mobile=True, is_complex=True), 120),
    ],
)
def test_increments_compose(settings, context, expected):
    assert resolve_timeout(context, settings).timeout_s == expected


def test_four_distinct_messages(settings):
    messages = {
        resolve_timeout(TimeoutContext(is_mobile=m, is_complex=c), settings).message
        for m in (True, False)
        for c in (True, False)
    }
    assert len(messages) == 4


def test_context_from_prompt(settings):
    short = TimeoutContext.build("x" * 100, user_agent=IPHONE_UA, settings=settings)
    assert short.is_mobile and not short.is_complex and not short.is_production
    long = TimeoutContext.build("x" * 8001, settings=settings.model_copy(update={"environment": "production"}))
    assert long.is_complex and long.is_production and not long.is_mobile
