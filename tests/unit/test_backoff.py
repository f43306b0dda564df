import pytest

from services.dispatcher import backoff_delay_ms, should_retry


@pytest.mark.parametrize("attempts_made,expected", [
    (0, 1000),
    (1, 2000),
    (2, 4000),
    (3, 8000),
    (4, 16000),
    (5, 30000),
    (6, 30000),
    (20, 30000),
])
def test_backoff_doubles_then_caps(attempts_made, expected):
    assert backoff_delay_ms(attempts_made) == expected


def test_backoff_honors_configured_base_and_cap():
    assert backoff_delay_ms(2, base_ms=10, max_ms=1000) == 40
    assert backoff_delay_ms(10, base_ms=10, max_ms=1000) == 1000


def test_backoff_rejects_negative_attempts():
    with pytest.raises(ValueError):
        backoff_delay_ms(-1)


def test_retry_allowed_until_last_attempt():
    assert should_retry(0, 3)
    assert should_retry(1, 3)
    assert not should_retry(2, 3)
    assert not should_retry(0, 1)
