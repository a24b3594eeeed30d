from datetime import datetime, timedelta

import pytest

from app.services.job_processor import backoff_delay, compute_next_retry_at


class TestBackoffDelay:

    @pytest.mark.parametrize(
        "prior_count, minutes",
        [(0, 2), (1, 5), (2, 10), (3, 10), (25, 10)],
    )
    def test_default_table(self, prior_count, minutes):
        assert backoff_delay(prior_count) == timedelta(minutes=minutes)

    def test_custom_steps_plateau_on_last(self):
        steps = [1, 3]
        assert backoff_delay(0, steps) == timedelta(minutes=1)
        assert backoff_delay(1, steps) == timedelta(minutes=3)
        assert backoff_delay(7, steps) == timedelta(minutes=3)

    def test_negative_or_missing_count_uses_first_step(self):
        assert backoff_delay(-1) == timedelta(minutes=2)
        assert backoff_delay(None) == timedelta(minutes=2)


def test_next_retry_is_relative_to_now():
    now = datetime(2026, 3, 1, 12, 0, 0)
    assert compute_next_retry_at(0, now=now) == datetime(2026, 3, 1, 12, 2, 0)
    assert compute_next_retry_at(2, now=now) == datetime(2026, 3, 1, 12, 10, 0)
