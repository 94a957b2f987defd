from datetime import datetime, timedelta, timezone

import pytest

from infrastructure.persistence import Condition, from_timestamp, to_timestamp

pytestmark = pytest.mark.unit


class TestCondition:
    def test_equality_and_missing_attributes(self):
        item = {"id": "k", "usage_count": 3}

        assert Condition.eq("usage_count", 3).matches(item)
        assert not Condition.eq("usage_count", 4).matches(item)
        assert Condition.eq("lease_id", None).matches(item)
        assert Condition.not_exists("lease_id").matches(item)
        assert Condition.exists("id").matches(item)
        assert Condition.ne("usage_count", 4).matches(item)

    def test_absent_item(self):
        assert Condition.not_exists("id").matches(None)
        assert not Condition.exists("id").matches(None)

    def test_ordering_comparisons(self):
        item = {"last_used": "2026-01-05T12:00:00.000000+00:00"}

        assert Condition.le("last_used", "2026-01-05T12:00:00.000000+00:00").matches(item)
        assert not Condition.lt("last_used", "2026-01-05T12:00:00.000000+00:00").matches(item)
        assert not Condition.le("missing", "2026").matches(item)
        assert not Condition.le("last_used", 5).matches(item)

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            Condition("usage_count", "between", 1)


class TestTimestamps:
    def test_lexicographic_order_matches_time_order(self):
        earlier = datetime(2026, 1, 5, 9, 59, 59, 999999, tzinfo=timezone.utc)
        later = earlier + timedelta(microseconds=1)

        assert to_timestamp(earlier) < to_timestamp(later)
        assert len(to_timestamp(earlier)) == len(to_timestamp(later))

    def test_naive_values_are_treated_as_utc(self):
        naive = datetime(2026, 1, 5, 12, 0, 0)

        assert from_timestamp(to_timestamp(naive)) == naive.replace(tzinfo=timezone.utc)

    def test_other_offsets_are_normalized(self):
        eastern = timezone(timedelta(hours=-5))
        moment = datetime(2026, 1, 5, 7, 0, 0, tzinfo=eastern)

        assert to_timestamp(moment) == "2026-01-05T12:00:00.000000+00:00"
        assert from_timestamp(None) is None
