"""
Tests for leaderboard and trending scores.

Test Coverage:
- Hot and trend score formulas, including decay floor and endorsement bonus
- New / hot flags
- Test-mode tokens never rank
- Leaderboards order by the chosen metric with 1-based ranks and a limit
- Identical inputs give identical order (stable ties)
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from goodbags.models import ApprovalStatus, LaunchedToken
from goodbags.ranking import (
    LeaderboardType,
    hot_score,
    is_hot,
    is_new,
    leaderboard,
    trend_score,
    trending,
)

from .conftest import random_address

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def token(name: str, hours_ago: float = 1, donated: str = "0", volume: str = "0", donations: int = 0, **extra) -> LaunchedToken:
    return LaunchedToken(
        name=name,
        symbol=name[:4].upper(),
        mint_address=random_address(),
        creator_wallet=random_address(),
        launched_at=NOW - timedelta(hours=hours_ago),
        charity_donated=Decimal(donated),
        trading_volume=Decimal(volume),
        donation_count=donations,
        **extra,
    )


def test_hot_score_formula():
    t = token("alpha", hours_ago=10, donated="0.5", volume="2", donations=3)
    # (100 - 10) + 3 * 10 + 0.5 * 100 + 2 * 10
    assert hot_score(t, NOW) == pytest.approx(190.0)


def test_hot_score_recency_floors_at_zero():
    t = token("old", hours_ago=500)
    assert hot_score(t, NOW) == 0.0


def test_trend_score_decay_and_bonus():
    fresh = token("fresh", hours_ago=0, donated="1", volume="1", donations=2)
    # 2 * 15 + 1 * 100 + 1 * 20, no decay yet
    assert trend_score(fresh, NOW) == pytest.approx(150.0)

    stale = token("stale", hours_ago=1000, donated="1", volume="1", donations=2)
    assert trend_score(stale, NOW) == pytest.approx(15.0)

    endorsed = token("endorsed", hours_ago=1000, charity_approval_status=ApprovalStatus.approved)
    assert trend_score(endorsed, NOW) == pytest.approx(50.0)


def test_new_and_hot_flags():
    assert is_new(token("a", hours_ago=23), NOW)
    assert not is_new(token("b", hours_ago=25), NOW)
    assert is_hot(token("c", donations=3))
    assert is_hot(token("d", volume="1"))
    assert not is_hot(token("e", donations=2, volume="0.99"))


def test_leaderboards_by_metric():
    a = token("a", donated="3", volume="1")
    b = token("b", donated="1", volume="5")
    c = token("c", donated="2", volume="2")
    tokens = [a, b, c]

    by_donations = leaderboard(tokens, LeaderboardType.donations, now=NOW)
    assert [e.token.name for e in by_donations] == ["a", "c", "b"]
    assert [e.rank for e in by_donations] == [1, 2, 3]
    assert by_donations[0].score == pytest.approx(3.0)

    by_volume = leaderboard(tokens, LeaderboardType.volume, now=NOW)
    assert [e.token.name for e in by_volume] == ["b", "c", "a"]


def test_leaderboard_excludes_test_tokens_and_limits():
    tokens = [token(f"t{i}", donated=str(i)) for i in range(15)]
    tokens.append(token("test", donated="100", is_test=True))

    entries = leaderboard(tokens, "donations", limit=10, now=NOW)
    assert len(entries) == 10
    assert all(not e.token.is_test for e in entries)
    assert entries[0].token.name == "t14"


def test_ties_keep_input_order():
    tokens = [token(f"tie{i}", hours_ago=5) for i in range(5)]
    first = [e.token.id for e in leaderboard(tokens, LeaderboardType.hot, now=NOW)]
    second = [e.token.id for e in leaderboard(tokens, LeaderboardType.hot, now=NOW)]
    assert first == second == [t.id for t in tokens]


def test_trending_orders_by_trend_score():
    quiet = token("quiet", hours_ago=2)
    busy = token("busy", hours_ago=2, donations=5, volume="3")
    endorsed = token("endorsed", hours_ago=2, charity_approval_status=ApprovalStatus.approved)

    entries = trending([quiet, busy, endorsed], limit=5, now=NOW)
    assert [e.token.name for e in entries] == ["busy", "endorsed", "quiet"]
    assert entries[0].is_hot
    assert entries[0].is_new


def test_invalid_leaderboard_type():
    with pytest.raises(ValueError):
        leaderboard([], "biggest")
