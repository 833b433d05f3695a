"""Tests for targeting rule evaluation."""
import random
from datetime import datetime, timezone

from src.abtesting.schema import RequestContext, TimeWindow
from src.abtesting.targeting import evaluate_targeting, in_time_windows, is_bot, passes_traffic_gate

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def test_no_rules_admits_everyone(make_experiment):
    exp = make_experiment()
    assert all(evaluate_targeting(exp, f"u{i}", None, NOW) for i in range(50))


def test_zero_traffic_excludes_everyone(make_experiment):
    exp = make_experiment(traffic=0)
    assert not any(evaluate_targeting(exp, f"u{i}", None, NOW) for i in range(200))


def test_sticky_traffic_gate_is_stable(make_experiment):
    """A user's inclusion does not change between calls."""
    exp = make_experiment(traffic=30)
    first = [passes_traffic_gate(exp, f"u{i}") for i in range(300)]
    again = [passes_traffic_gate(exp, f"u{i}") for i in range(300)]
    assert first == again
    assert 50 <= sum(first) <= 130


def test_random_traffic_gate_uses_rng(make_experiment):
    exp = make_experiment(traffic=50)
    rng = random.Random(7)
    draws = [passes_traffic_gate(exp, "same_user", sticky=False, rng=rng) for _ in range(200)]
    assert True in draws and False in draws


def test_device_allowlist(make_experiment):
    exp = make_experiment(device_types=["mobile"])
    assert evaluate_targeting(exp, "u1", RequestContext(device_type="mobile"), NOW)
    assert not evaluate_targeting(exp, "u1", RequestContext(device_type="desktop"), NOW)


def test_geo_allowlist(make_experiment):
    exp = make_experiment(geo_targeting=["NC", "FL"])
    assert evaluate_targeting(exp, "u1", RequestContext(geo_location="FL"), NOW)
    assert not evaluate_targeting(exp, "u1", RequestContext(geo_location="TX"), NOW)


def test_missing_context_skips_rule(make_experiment):
    """Rules whose context field is absent pass."""
    exp = make_experiment(device_types=["mobile"], geo_targeting=["NC"])
    assert evaluate_targeting(exp, "u1", None, NOW)
    assert evaluate_targeting(exp, "u1", RequestContext(ip_address="10.0.0.1"), NOW)


def test_time_window_half_open():
    windows = [TimeWindow(start="2026-03-02T12:00:00+00:00", end="2026-03-02T13:00:00+00:00")]
    assert in_time_windows(windows, NOW)
    assert not in_time_windows(windows, datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc))
    assert not in_time_windows(windows, datetime(2026, 3, 2, 11, 59, tzinfo=timezone.utc))


def test_time_window_timezone():
    """Naive bounds are read in the window's timezone."""
    # 07:00-08:00 New York (EST, UTC-5) is 12:00-13:00 UTC
    windows = [TimeWindow(start="2026-03-02T07:00:00", end="2026-03-02T08:00:00", timezone="America/New_York")]
    assert in_time_windows(windows, NOW)


def test_any_window_matches(make_experiment):
    exp = make_experiment(time_windows=[
        TimeWindow(start="2026-01-01T00:00:00", end="2026-01-02T00:00:00"),
        TimeWindow(start="2026-03-01T00:00:00", end="2026-03-03T00:00:00"),
    ])
    assert evaluate_targeting(exp, "u1", None, NOW)
    exp.targeting_rules.time_windows = exp.targeting_rules.time_windows[:1]
    assert not evaluate_targeting(exp, "u1", None, NOW)


def test_bot_exclusion(make_experiment):
    exp = make_experiment()
    googlebot = RequestContext(user_agent="Mozilla/5.0 (compatible; Googlebot/2.1)")
    assert is_bot(googlebot.user_agent)
    assert not evaluate_targeting(exp, "u1", googlebot, NOW)

    exp.settings.exclude_bots = False
    assert evaluate_targeting(exp, "u1", googlebot, NOW)


def test_browser_is_not_bot():
    assert not is_bot("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Safari/604.1")
    assert not is_bot(None)


def test_time_window_datetime_bounds(make_experiment):
    exp = make_experiment(time_windows=[
        TimeWindow(start=datetime(2026, 1, 1, tzinfo=timezone.utc), end=datetime(2027, 1, 1, tzinfo=timezone.utc)),
    ])
    assert evaluate_targeting(exp, "u1", None, NOW)
    assert not evaluate_targeting(exp, "u1", None, datetime(2027, 1, 1, tzinfo=timezone.utc))


def test_invalid_timezone_falls_back_to_utc():
    """A timezone that slipped past validation does not break evaluation."""
    windows = [TimeWindow(start="2026-03-02T12:00:00", end="2026-03-02T13:00:00", timezone="/etc/localtime")]
    assert in_time_windows(windows, NOW)
