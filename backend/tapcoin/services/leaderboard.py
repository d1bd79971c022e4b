"""Read-only ranked views over player accounts."""

from sqlalchemy import asc, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User
from ..schemas import LeaderboardEntry, LeaderboardResponse

BOARD_BALANCE = "balance"
BOARD_REFERRALS = "referrals"

# How many leading places are highlighted on each board
HIGHLIGHTED_PLACES = {BOARD_BALANCE: 3, BOARD_REFERRALS: 1}


async def build_leaderboard(db: AsyncSession, board: str, limit: int = 100) -> LeaderboardResponse:
    """
    Ranking: metric DESC, id ASC (tiebreaker).
    Ranks start at 1 and are dense over the returned slice.
    """
    if board == BOARD_BALANCE:
        metric = User.balance
    elif board == BOARD_REFERRALS:
        metric = User.referral_count
    else:
        raise ValueError(f"Unknown leaderboard: {board}")

    result = await db.execute(
        select(User.telegram_id, User.username, metric)
        .order_by(desc(metric), asc(User.id))
        .limit(limit)
    )
    rows = result.all()

    highlighted = HIGHLIGHTED_PLACES[board]
    leaders = [
        LeaderboardEntry(
            rank=i + 1,
            telegram_id=telegram_id,
            username=username,
            score=score,
            highlighted=i < highlighted,
        )
        for i, (telegram_id, username, score) in enumerate(rows)
    ]
    return LeaderboardResponse(board=board, leaders=leaders)
