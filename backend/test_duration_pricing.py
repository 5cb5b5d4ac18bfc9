"""
Duration phrases and money math used by discount and bulk price tools.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from app.services.duration import (
    MS_PER_DAY,
    MS_PER_HOUR,
    Duration,
    DurationUnit,
    find_duration_phrase,
    format_duration,
    format_duration_ms,
    parse_duration,
    parse_duration_to_ms,
    parse_expiry,
)
from app.services.pricing import (
    apply_multiplier,
    discounted_price,
    format_number,
    format_usd,
    price_multiplier,
    round_money,
)


def test_parse_duration():
    print("\n" + "=" * 70)
    print("TEST 1: Duration parsing")
    print("=" * 70)

    assert parse_duration("6 часов") == Duration(6, DurationUnit.HOURS)
    assert parse_duration("3 дня") == Duration(3, DurationUnit.DAYS)
    assert parse_duration("2 недели") == Duration(2, DurationUnit.WEEKS)
    assert parse_duration("30 минут") == Duration(30, DurationUnit.MINUTES)
    assert parse_duration("12h") == Duration(12, DurationUnit.HOURS)
    assert parse_duration("1 week") == Duration(1, DurationUnit.WEEKS)
    assert parse_duration("0 дней") is None
    assert parse_duration("навсегда") is None
    assert parse_duration(None) is None
    assert parse_duration_to_ms("24 hours") == 24 * MS_PER_HOUR
    print("  PASS: Russian and English units")


def test_format_duration():
    print("\n" + "=" * 70)
    print("TEST 2: Russian plural forms")
    print("=" * 70)

    cases = [
        (Duration(1, DurationUnit.HOURS), "1 час"),
        (Duration(2, DurationUnit.HOURS), "2 часа"),
        (Duration(5, DurationUnit.HOURS), "5 часов"),
        (Duration(11, DurationUnit.DAYS), "11 дней"),
        (Duration(21, DurationUnit.DAYS), "21 день"),
        (Duration(3, DurationUnit.WEEKS), "3 недели"),
        (Duration(25, DurationUnit.MINUTES), "25 минут"),
    ]
    for duration, expected in cases:
        assert format_duration(duration) == expected
        print(f"  PASS: {expected}")

    assert format_duration(None) == "постоянная"
    assert format_duration_ms(3 * MS_PER_DAY) == "3 дня"
    assert format_duration_ms(6 * MS_PER_HOUR) == "6 часов"
    assert format_duration_ms(None) == "постоянная"


def test_find_duration_phrase():
    assert find_duration_phrase("скидка 20% на iPhone на 3 дня") == "3 дня"
    assert find_duration_phrase("скидка 20% на iPhone 12") is None
    assert find_duration_phrase("") is None
    print("  PASS: phrase extraction")


def test_parse_expiry():
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_expiry("3 дня", now) == now + timedelta(days=3)
    assert parse_expiry("2030-01-01T00:00:00Z", now) == datetime(2030, 1, 1, tzinfo=timezone.utc)
    naive = parse_expiry("2030-01-01T00:00:00", now)
    assert naive.tzinfo is not None
    with pytest.raises(ValueError):
        parse_expiry("когда-нибудь", now)
    print("  PASS: expiry from duration or ISO datetime")


def test_money_math():
    print("\n" + "=" * 70)
    print("TEST 3: Money math")
    print("=" * 70)

    assert discounted_price(999, 20) == 799.2
    assert discounted_price(10, 33) == 6.7
    assert round_money("0.005") == 0.01
    assert apply_multiplier(10, price_multiplier(10, "increase")) == 11.0
    assert apply_multiplier(10, price_multiplier(10, "decrease")) == 9.0
    assert format_number(799.2) == "799.2"
    assert format_number(10.50) == "10.5"
    assert format_number(999) == "999"
    assert format_usd(12.5) == "$12.5"
    print("  PASS: half-up cents, trimmed formatting")


def main():
    test_parse_duration()
    test_format_duration()
    test_find_duration_phrase()
    test_parse_expiry()
    test_money_math()
    print("\n✅ All duration/pricing tests passed!")


if __name__ == "__main__":
    main()
