"""
Pricing and progression math.

Pure functions: no I/O, no state. Everything that derives a price, an income
rate or a click power from catalog values and owned levels lives here.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping

from .catalog import ClickUpgradeDef, PassiveUpgradeDef

BONUS_BOMB = "bomb"
BONUS_SHIELD = "shield"


def upgrade_price(base_price: float, level: int, multiplier: float) -> int:
    """Price of the next unit when ``level`` units are already owned."""
    return math.floor(base_price * multiplier ** level)


def upgrade_income(base_income: float, level: int) -> float:
    return base_income * level


def click_boost(base_boost: int, level: int) -> int:
    return base_boost * level


def total_income_per_second(
    catalog: Iterable[PassiveUpgradeDef],
    levels: Mapping[int, int],
) -> float:
    """Sum of ``base_income * level`` over owned passive upgrades."""
    return sum(upgrade_income(u.base_income, levels.get(u.id, 0)) for u in catalog)


def total_click_power(
    catalog: Iterable[ClickUpgradeDef],
    levels: Mapping[int, int],
) -> int:
    """``1 + sum(boost * level)`` over owned click upgrades."""
    return 1 + sum(click_boost(u.click_boost, levels.get(u.id, 0)) for u in catalog)


def offline_earnings(
    income_per_second: float,
    last_online: datetime | None,
    now: datetime,
    cap: timedelta,
) -> float:
    """
    Coins accrued while disconnected.

    Elapsed time is counted in whole seconds, clamped to ``[0, cap]``; a clock
    that went backwards yields zero rather than a negative amount.
    """
    if income_per_second <= 0 or last_online is None:
        return 0.0
    elapsed = int((now - last_online).total_seconds())
    seconds = min(max(elapsed, 0), int(cap.total_seconds()))
    return income_per_second * seconds


def roll_bonus_drop(draw: float, bomb_chance: float, shield_chance: float) -> str | None:
    """
    Map one uniform draw in ``[0, 1)`` onto stacked thresholds.

    ``[0, bomb)`` drops a bomb, ``[bomb, bomb + shield)`` drops a shield,
    anything above drops nothing. At most one bonus per draw.
    """
    if draw < bomb_chance:
        return BONUS_BOMB
    if draw < bomb_chance + shield_chance:
        return BONUS_SHIELD
    return None


def game_day(moment: datetime, offset: timedelta = timedelta(0)) -> date:
    """Calendar day of ``moment`` (naive UTC) shifted by the day-boundary offset."""
    return (moment + offset).date()


def effective_streak(
    streak: int,
    last_claimed: datetime | None,
    now: datetime,
    offset: timedelta = timedelta(0),
) -> int:
    """Streak carried into the next claim: reset to 0 if a day was skipped."""
    if last_claimed is None:
        return streak
    gap = (game_day(now, offset) - game_day(last_claimed, offset)).days
    if gap >= 2:
        return 0
    return streak


def claimed_today(
    last_claimed: datetime | None,
    now: datetime,
    offset: timedelta = timedelta(0),
) -> bool:
    if last_claimed is None:
        return False
    return game_day(last_claimed, offset) >= game_day(now, offset)
