"""Tests for livesettings.core.coerce."""

from datetime import date, datetime, timedelta, timezone

import pytest

from livesettings.core import coerce


class TestBoolean:
    """Tests for boolean."""

    def test_falsy_tokens(self):
        assert coerce.boolean("off") is False
        assert coerce.boolean("OFF") is False
        assert coerce.boolean("f") is False
        assert coerce.boolean("false") is False
        assert coerce.boolean("0") is False
        assert coerce.boolean(0) is False
        assert coerce.boolean(False) is False

    def test_truthy_tokens(self):
        assert coerce.boolean("On") is True
        assert coerce.boolean("t") is True
        assert coerce.boolean("TRUE") is True
        assert coerce.boolean("1") is True
        assert coerce.boolean(1) is True
        assert coerce.boolean(True) is True

    def test_blank_is_none(self):
        assert coerce.boolean("") is None
        assert coerce.boolean("   ") is None
        assert coerce.boolean(None) is None

    def test_unknown_string_is_true(self):
        assert coerce.boolean("maybe") is True
        assert coerce.boolean("no") is True


class TestNumbers:
    def test_integer(self):
        assert coerce.integer("42") == 42
        assert coerce.integer(" -7 ") == -7
        assert coerce.integer(3.0) == 3
        assert coerce.integer("") is None

    def test_integer_rejects_fractions(self):
        with pytest.raises(ValueError):
            coerce.integer("1.5")
        with pytest.raises(ValueError):
            coerce.integer(1.5)
        with pytest.raises(ValueError):
            coerce.integer("abc")

    def test_floating(self):
        assert coerce.floating("1.25") == 1.25
        assert coerce.floating(2) == 2.0
        assert coerce.floating(None) is None

    def test_floating_rejects_garbage(self):
        with pytest.raises(ValueError):
            coerce.floating("one")
        with pytest.raises(ValueError):
            coerce.floating("nan")


class TestTime:
    """Tests for time."""

    def test_none_and_blank_return_none(self):
        assert coerce.time(None) is None
        assert coerce.time("") is None
        assert coerce.time("   ") is None

    def test_datetime_naive_gets_utc(self):
        dt = datetime(2023, 1, 15, 10, 30, 0)
        result = coerce.time(dt)
        assert result.tzinfo is timezone.utc
        assert result.year == 2023 and result.month == 1 and result.day == 15

    def test_datetime_aware_converted_to_utc(self):
        dt = datetime(2023, 1, 15, 12, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        result = coerce.time(dt)
        assert result == dt
        assert result.hour == 10

    def test_date(self):
        assert coerce.time(date(2024, 2, 29)) == datetime(2024, 2, 29, tzinfo=timezone.utc)

    def test_epoch_seconds(self):
        assert coerce.time(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_iso_with_z(self):
        result = coerce.time("2023-05-01T08:15:30.123456Z")
        assert result == datetime(2023, 5, 1, 8, 15, 30, 123456, tzinfo=timezone.utc)

    def test_iso_like_format(self):
        result = coerce.time("2023-01-01 12:00:00")
        assert result.year == 2023 and result.month == 1 and result.day == 1
        assert result.hour == 12 and result.minute == 0

    def test_us_format(self):
        result = coerce.time("01/15/2023 10:30:00")
        assert result.year == 2023 and result.month == 1 and result.day == 15

    def test_date_only(self):
        result = coerce.time("2023-06-20")
        assert result.year == 2023 and result.month == 6 and result.day == 20

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            coerce.time("not-a-date")
        with pytest.raises(ValueError):
            coerce.time("2023-13-45")

    def test_iso8601_round_trip(self):
        dt = datetime(2023, 1, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
        assert coerce.iso8601(dt) == "2023-01-02T03:04:05.000006+00:00"
        assert coerce.time(coerce.iso8601(dt)) == dt

    def test_with_precision(self):
        dt = datetime(2023, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc)
        assert coerce.with_precision(dt, coerce.MILLISECOND).microsecond == 123000
        assert coerce.with_precision(dt, coerce.MICROSECOND) == dt
        assert coerce.with_precision(None) is None
        with pytest.raises(ValueError):
            coerce.with_precision(dt, "second")


class TestArray:
    def test_split_on_newlines(self):
        assert coerce.array("a\nb\r\nc") == ["a", "b", "c"]

    def test_list_drops_blank_members(self):
        assert coerce.array(["a", "", None, 2]) == ["a", "2"]

    def test_empty(self):
        assert coerce.array(None) is None
        assert coerce.array("") is None

    def test_join_array(self):
        assert coerce.join_array(["a", "b"]) == "a\nb"
        assert coerce.join_array([]) is None
