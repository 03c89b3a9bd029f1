from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Enum, Integer, MetaData, String, Table
)

from ..matches.enums import MatchStatus
from ..players import PlayerActivity

metadata = MetaData()

player = Table(
    "player", metadata,
    Column("id",                    Integer,    primary_key=True, autoincrement=False),
    Column("region",                String(32), nullable=False),
    Column("rating",                Integer,    nullable=False),
    Column("rank",                  String(32), nullable=False),
    Column("tier",                  String(8),  nullable=False),
    Column("highest_rank",          String(32), nullable=False),
    Column("highest_tier",          String(8),  nullable=False),
    Column("win_streak",            Integer,    nullable=False, default=0),
    Column("longest_win_streak",    Integer,    nullable=False, default=0),
    Column("matches_played",        Integer,    nullable=False, default=0),
    Column("matches_won",           Integer,    nullable=False, default=0),
    Column("matches_lost",          Integer,    nullable=False, default=0),
    Column("activity",              Enum(PlayerActivity), nullable=False),
)

ranked_match = Table(
    "ranked_match", metadata,
    Column("id",                    Integer,    primary_key=True, autoincrement=False),
    Column("status",                Enum(MatchStatus), nullable=False, index=True),
    Column("player1_id",            Integer,    nullable=False, index=True),
    Column("player2_id",            Integer,    nullable=False, index=True),
    Column("is_hypercharged",       Boolean,    nullable=False, default=False),
    Column("dispute_created_at",    DateTime),
    Column("created_at",            DateTime,   nullable=False),
    Column("data",                  JSON,       nullable=False),
)

queue_entry = Table(
    "queue_entry", metadata,
    Column("user_id",               Integer,    primary_key=True, autoincrement=False),
    Column("region",                String(32), nullable=False),
    Column("rank",                  String(32), nullable=False),
    Column("tier",                  String(8),  nullable=False),
    Column("rank_minimum",          Integer,    nullable=False),
    Column("rank_position",         Integer,    nullable=False),
    Column("rating",                Integer,    nullable=False),
    Column("joined_at",             DateTime,   nullable=False),
    Column("pairing_attempts",      Integer,    nullable=False, default=0),
)

# Single row holding the last issued match id
match_counter = Table(
    "match_counter", metadata,
    Column("id",                    Integer,    primary_key=True, autoincrement=False),
    Column("value",                 Integer,    nullable=False),
)
