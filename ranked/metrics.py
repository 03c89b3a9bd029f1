"""
Prometheus metric definitions
"""

from prometheus_client import Counter, Gauge, Histogram, Info


class MatchEnd:
    COMPLETED = "completed"
    FORFEIT = "forfeit"
    CANCELLED = "cancelled"


info = Info("build", "Information collected on server start")

# ==========
# Matchmaker
# ==========
queue_players = Gauge(
    "ranked_queue_players", "Number of players waiting in the queue"
)

pairing_cost = Histogram(
    "ranked_queue_pairing_cost",
    "Cost of accepted pairings",
    buckets=[0.05, 0.1, 0.15, 0.2, 0.25, 0.3, 0.4, 0.5, 0.75, 1.0],
)

queue_wait_duration = Histogram(
    "ranked_queue_wait_duration_seconds",
    "Time spent in the queue before leaving it",
    ["status"],
    buckets=[30, 60, 120, 180, 240, 300, 420, 600, 900, 1800, 3600],
)

matches_created = Counter(
    "ranked_matches_created_total",
    "Number of matches created by the queue",
    ["hypercharged"]
)

pairings_abandoned = Counter(
    "ranked_queue_pairings_abandoned_total",
    "Players removed after exceeding the pairing attempt limit",
)

pair_persist_failures = Counter(
    "ranked_queue_pair_persist_failures_total",
    "Failed attempts to persist a newly paired match",
)

# ==========
# Pre game
# ==========
negotiation_timeouts = Counter(
    "ranked_negotiation_timeouts_total",
    "Number of pre game prompts that timed out",
    ["phase"]
)

room_code_strikes = Counter(
    "ranked_room_code_strikes_total",
    "Number of room codes flagged as invalid",
)

active_negotiations = Gauge(
    "ranked_active_negotiations",
    "Number of matches currently in pre game negotiation",
)

# ========
# Outcomes
# ========
matches_finished = Counter(
    "ranked_matches_finished_total",
    "Number of matches that reached a terminal state",
    ["result"]
)

rating_changes = Histogram(
    "ranked_rating_change",
    "Absolute rating change applied to a player",
    ["outcome"],
    buckets=[10, 25, 50, 75, 100, 125, 150, 200],
)

# ========
# Disputes
# ========
disputes_opened = Counter(
    "ranked_disputes_opened_total",
    "Number of disputes opened",
    ["origin"]
)

disputes_closed = Counter(
    "ranked_disputes_closed_total",
    "Number of disputes closed",
    ["status"]
)

dispute_backlog = Gauge(
    "ranked_dispute_backlog", "Number of disputes waiting for a reviewer"
)

# =====
# Store
# =====
db_exceptions = Counter(
    "db_exceptions_total",
    "Total number of database exceptions when executing queries",
    ["class", "code"]
)
