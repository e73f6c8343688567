"""
Leaderboard and trending scores.

Pure functions over already-loaded token records. Test-mode tokens never rank.
`now` is passed in explicitly so the same inputs always give the same order;
ties keep their input order (Python's sort is stable).
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from .models import ApiModel, ApprovalStatus, LaunchedToken, utcnow

NEW_TOKEN_HOURS = 24
TREND_DECAY_HOURS = 24 * 7
HOT_MIN_DONATIONS = 3
HOT_MIN_VOLUME = 1.0
ENDORSEMENT_BONUS = 50.0


class LeaderboardType(str, Enum):
    donations = "donations"
    volume = "volume"
    hot = "hot"


class LeaderboardEntry(ApiModel):
    rank: int
    score: float
    token: LaunchedToken


class TrendingEntry(ApiModel):
    trend_score: float
    is_new: bool
    is_hot: bool
    token: LaunchedToken


def hours_since_launch(token: LaunchedToken, now: Optional[datetime] = None) -> float:
    now = now or utcnow()
    return (now - token.launched_at).total_seconds() / 3600


def hot_score(token: LaunchedToken, now: Optional[datetime] = None) -> float:
    hours = hours_since_launch(token, now)
    recency = max(0.0, 100 - hours)
    activity = token.donation_count * 10
    value = float(token.charity_donated) * 100 + float(token.trading_volume) * 10
    return recency + activity + value


def trend_score(token: LaunchedToken, now: Optional[datetime] = None) -> float:
    hours = hours_since_launch(token, now)
    decay = max(0.1, 1 - hours / TREND_DECAY_HOURS)
    activity = token.donation_count * 15 + float(token.charity_donated) * 100 + float(token.trading_volume) * 20
    bonus = ENDORSEMENT_BONUS if token.charity_approval_status == ApprovalStatus.approved else 0.0
    return activity * decay + bonus


def is_new(token: LaunchedToken, now: Optional[datetime] = None) -> bool:
    return hours_since_launch(token, now) < NEW_TOKEN_HOURS


def is_hot(token: LaunchedToken) -> bool:
    return token.donation_count >= HOT_MIN_DONATIONS or float(token.trading_volume) >= HOT_MIN_VOLUME


def live_tokens(tokens: List[LaunchedToken]) -> List[LaunchedToken]:
    return [t for t in tokens if not t.is_test]


def leaderboard(
    tokens: List[LaunchedToken],
    board: LeaderboardType = LeaderboardType.donations,
    limit: int = 10,
    now: Optional[datetime] = None,
) -> List[LeaderboardEntry]:
    """Top `limit` live tokens for the given board, ranked from 1."""
    board = LeaderboardType(board)
    now = now or utcnow()

    if board == LeaderboardType.donations:
        def score(t: LaunchedToken) -> float:
            return float(t.charity_donated)
    elif board == LeaderboardType.volume:
        def score(t: LaunchedToken) -> float:
            return float(t.trading_volume)
    else:
        def score(t: LaunchedToken) -> float:
            return hot_score(t, now)

    scored = [(score(t), t) for t in live_tokens(tokens)]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [
        LeaderboardEntry(rank=i + 1, score=s, token=t)
        for i, (s, t) in enumerate(scored[: max(0, limit)])
    ]


def trending(tokens: List[LaunchedToken], limit: int = 5, now: Optional[datetime] = None) -> List[TrendingEntry]:
    now = now or utcnow()
    entries = [
        TrendingEntry(trend_score=trend_score(t, now), is_new=is_new(t, now), is_hot=is_hot(t), token=t)
        for t in live_tokens(tokens)
    ]
    entries.sort(key=lambda e: e.trend_score, reverse=True)
    return entries[: max(0, limit)]
