from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError

from ..db import RankedDatabase
from ..db.models import match_counter, player, queue_entry, ranked_match
from ..decorators import with_logger
from ..exceptions import PersistenceError
from ..matches.enums import MatchStatus
from ..matches.match import Match
from ..matchmaker.queue_entry import QueueEntry
from ..players import PlayerActivity, PlayerProfile
from ..rating_service.ranks import Rank
from .base import Store

PROFILE_COLUMNS = (
    "region", "rating", "rank", "tier", "highest_rank", "highest_tier",
    "win_streak", "longest_win_streak", "matches_played", "matches_won",
    "matches_lost",
)


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Columns hold naive UTC timestamps"""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


@with_logger
class SqlStore(Store):
    """
    Store backed by the tables in `ranked.db.models`.

    Activity changes are a single conditional UPDATE, so two servers sharing
    a database still can't put one player in two matches.
    """

    def __init__(self, database: RankedDatabase):
        self._db = database

    async def initialize(self) -> None:
        await self._db.create_all()

    async def close(self) -> None:
        await self._db.close()

    # Players

    async def load_player(self, user_id: int) -> PlayerProfile:
        async with self._db.acquire() as conn:
            result = await conn.execute(
                select(player).where(player.c.id == user_id)
            )
            row = result.mappings().first()

        if row is None:
            return self.new_player(user_id)

        return PlayerProfile(
            user_id=user_id,
            **{column: row[column] for column in PROFILE_COLUMNS}
        )

    async def save_player(self, profile: PlayerProfile) -> None:
        values = {column: getattr(profile, column) for column in PROFILE_COLUMNS}
        try:
            async with self._db.acquire() as conn:
                result = await conn.deadlock_retry_execute(
                    player.update()
                    .where(player.c.id == profile.user_id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    await conn.execute(
                        player.insert().values(
                            id=profile.user_id,
                            activity=PlayerActivity.IDLE,
                            **values
                        )
                    )
        except DBAPIError as e:
            raise PersistenceError(f"Could not save player {profile.user_id}") from e

    async def increment_stats(self, user_id: int, **counters: int) -> None:
        unknown = set(counters) - set(PlayerProfile.STAT_COUNTERS)
        if unknown:
            raise ValueError(f"Unknown stat counters {sorted(unknown)}")

        async with self._db.acquire() as conn:
            result = await conn.deadlock_retry_execute(
                player.update()
                .where(player.c.id == user_id)
                .values(**{
                    name: player.c[name] + amount
                    for name, amount in counters.items()
                })
            )
            if result.rowcount == 0:
                profile = self.new_player(user_id)
                for name, amount in counters.items():
                    setattr(profile, name, amount)
                await conn.execute(
                    player.insert().values(
                        id=user_id,
                        activity=PlayerActivity.IDLE,
                        **{c: getattr(profile, c) for c in PROFILE_COLUMNS}
                    )
                )

    async def get_activity(self, user_id: int) -> PlayerActivity:
        async with self._db.acquire() as conn:
            result = await conn.execute(
                select(player.c.activity).where(player.c.id == user_id)
            )
            activity = result.scalar()
        return activity or PlayerActivity.IDLE

    async def compare_and_set_activity(
        self,
        user_id: int,
        expected: PlayerActivity,
        new: PlayerActivity
    ) -> bool:
        async with self._db.acquire() as conn:
            result = await conn.deadlock_retry_execute(
                player.update()
                .where(player.c.id == user_id)
                .where(player.c.activity == expected)
                .values(activity=new)
            )
            if result.rowcount == 1:
                return True

        if expected is not PlayerActivity.IDLE:
            return False

        # Players without a row are idle
        profile = self.new_player(user_id)
        try:
            async with self._db.acquire() as conn:
                await conn.execute(
                    player.insert().values(
                        id=user_id,
                        activity=new,
                        **{c: getattr(profile, c) for c in PROFILE_COLUMNS}
                    )
                )
        except IntegrityError:
            self._logger.debug("Lost activity race for player %d", user_id)
            return False
        return True

    # Matches

    async def next_match_id(self) -> int:
        async with self._db.acquire() as conn:
            result = await conn.deadlock_retry_execute(
                match_counter.update()
                .where(match_counter.c.id == 1)
                .values(value=match_counter.c.value + 1)
            )
            if result.rowcount == 0:
                await conn.execute(match_counter.insert().values(id=1, value=1))
                return 1

            result = await conn.execute(
                select(match_counter.c.value).where(match_counter.c.id == 1)
            )
            return result.scalar()

    async def save_match(self, match: Match) -> None:
        player1_id, player2_id = match.user_ids
        values = dict(
            status=match.status,
            player1_id=player1_id,
            player2_id=player2_id,
            is_hypercharged=match.is_hypercharged,
            dispute_created_at=to_db_time(
                match.dispute.created_at if match.dispute else None
            ),
            created_at=to_db_time(match.created_at),
            data=match.to_dict(),
        )
        try:
            async with self._db.acquire() as conn:
                result = await conn.deadlock_retry_execute(
                    ranked_match.update()
                    .where(ranked_match.c.id == match.id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    await conn.execute(
                        ranked_match.insert().values(id=match.id, **values)
                    )
        except DBAPIError as e:
            raise PersistenceError(f"Could not save match {match.id}") from e

    async def load_match(self, match_id: int) -> Optional[Match]:
        async with self._db.acquire() as conn:
            result = await conn.execute(
                select(ranked_match.c.data).where(ranked_match.c.id == match_id)
            )
            data = result.scalar()

        if data is None:
            return None
        return Match.from_dict(data)

    async def load_matches(self, status: MatchStatus) -> list[Match]:
        async with self._db.acquire() as conn:
            result = await conn.execute(
                select(ranked_match.c.data)
                .where(ranked_match.c.status == status)
                .order_by(ranked_match.c.id)
            )
            return [Match.from_dict(row.data) for row in result]

    async def count_recent_disputes(self, user_id: int, since: datetime) -> int:
        async with self._db.acquire() as conn:
            result = await conn.execute(
                select(func.count())
                .select_from(ranked_match)
                .where(or_(
                    ranked_match.c.player1_id == user_id,
                    ranked_match.c.player2_id == user_id,
                ))
                .where(ranked_match.c.dispute_created_at >= to_db_time(since))
            )
            return result.scalar() or 0

    # Queue

    async def save_queue_entry(self, entry: QueueEntry) -> None:
        values = dict(
            region=entry.region,
            rank=entry.rank.name,
            tier=entry.rank.tier,
            rank_minimum=entry.rank.minimum,
            rank_position=entry.rank.position,
            rating=entry.rating,
            joined_at=to_db_time(entry.joined_at),
            pairing_attempts=entry.pairing_attempts,
        )
        try:
            async with self._db.acquire() as conn:
                result = await conn.deadlock_retry_execute(
                    queue_entry.update()
                    .where(queue_entry.c.user_id == entry.user_id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    await conn.execute(
                        queue_entry.insert().values(
                            user_id=entry.user_id, **values
                        )
                    )
        except DBAPIError as e:
            raise PersistenceError(
                f"Could not save queue entry for {entry.user_id}"
            ) from e

    async def delete_queue_entry(self, user_id: int) -> None:
        async with self._db.acquire() as conn:
            await conn.deadlock_retry_execute(
                queue_entry.delete().where(queue_entry.c.user_id == user_id)
            )

    async def load_queue_entries(self) -> list[QueueEntry]:
        async with self._db.acquire() as conn:
            result = await conn.execute(
                select(queue_entry).order_by(queue_entry.c.joined_at)
            )
            return [
                QueueEntry(
                    user_id=row.user_id,
                    region=row.region,
                    rank=Rank(
                        row.rank, row.tier, row.rank_minimum, row.rank_position
                    ),
                    rating=row.rating,
                    joined_at=from_db_time(row.joined_at),
                    pairing_attempts=row.pairing_attempts,
                )
                for row in result
            ]
