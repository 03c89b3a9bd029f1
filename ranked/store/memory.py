import asyncio
from datetime import datetime
from typing import Optional

from ..matches.enums import MatchStatus
from ..matches.match import Match
from ..matchmaker.queue_entry import QueueEntry
from ..players import PlayerActivity, PlayerProfile
from .base import Store


class InMemoryStore(Store):
    """
    Keeps everything in dictionaries. Objects are stored as serialized
    snapshots so that callers never share mutable state with the store, the
    same way they wouldn't with a real database.
    """

    def __init__(self):
        self._players: dict[int, dict] = {}
        self._activity: dict[int, PlayerActivity] = {}
        self._matches: dict[int, dict] = {}
        self._queue: dict[int, dict] = {}
        self._match_id = 0
        self._lock = asyncio.Lock()

    async def load_player(self, user_id: int) -> PlayerProfile:
        data = self._players.get(user_id)
        if data is None:
            return self.new_player(user_id)
        return PlayerProfile.from_dict(data)

    async def save_player(self, profile: PlayerProfile) -> None:
        self._players[profile.user_id] = profile.to_dict()

    async def increment_stats(self, user_id: int, **counters: int) -> None:
        unknown = set(counters) - set(PlayerProfile.STAT_COUNTERS)
        if unknown:
            raise ValueError(f"Unknown stat counters {sorted(unknown)}")

        async with self._lock:
            data = self._players.get(user_id)
            if data is None:
                data = self.new_player(user_id).to_dict()
            for name, amount in counters.items():
                data[name] += amount
            self._players[user_id] = data

    async def get_activity(self, user_id: int) -> PlayerActivity:
        return self._activity.get(user_id, PlayerActivity.IDLE)

    async def compare_and_set_activity(
        self,
        user_id: int,
        expected: PlayerActivity,
        new: PlayerActivity
    ) -> bool:
        async with self._lock:
            current = self._activity.get(user_id, PlayerActivity.IDLE)
            if current is not expected:
                return False
            self._activity[user_id] = new
            return True

    async def next_match_id(self) -> int:
        async with self._lock:
            self._match_id += 1
            return self._match_id

    async def save_match(self, match: Match) -> None:
        self._matches[match.id] = match.to_dict()

    async def load_match(self, match_id: int) -> Optional[Match]:
        data = self._matches.get(match_id)
        if data is None:
            return None
        return Match.from_dict(data)

    async def load_matches(self, status: MatchStatus) -> list[Match]:
        return [
            Match.from_dict(data)
            for data in self._matches.values()
            if data["status"] == status.value
        ]

    async def count_recent_disputes(self, user_id: int, since: datetime) -> int:
        count = 0
        for data in self._matches.values():
            dispute = data.get("dispute")
            if dispute is None:
                continue
            if user_id not in (p["user_id"] for p in data["participants"]):
                continue
            if datetime.fromisoformat(dispute["created_at"]) >= since:
                count += 1
        return count

    async def save_queue_entry(self, entry: QueueEntry) -> None:
        self._queue[entry.user_id] = entry.to_dict()

    async def delete_queue_entry(self, user_id: int) -> None:
        self._queue.pop(user_id, None)

    async def load_queue_entries(self) -> list[QueueEntry]:
        entries = [QueueEntry.from_dict(data) for data in self._queue.values()]
        return sorted(entries, key=lambda entry: entry.joined_at)
