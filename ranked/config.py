"""
Server config variables
"""

import asyncio
import logging
import os
from typing import Callable

import yaml

from .decorators import with_logger

# Logging setup
TRACE = 5
logging.addLevelName(TRACE, "TRACE")
logging.getLogger("aio_pika").setLevel(logging.INFO)
logging.getLogger("aiormq").setLevel(logging.INFO)
logging.getLogger("aiosqlite").setLevel(logging.INFO)


@with_logger
class ConfigurationStore:
    def __init__(self):
        """
        Change default values here.
        """
        self.CONFIGURATION_REFRESH_TIME = 300
        self.LOG_LEVEL = "DEBUG"

        self.METRICS_PORT = 8011
        self.ENABLE_METRICS = False

        # Any sqlalchemy async url. Use mysql+aiomysql://... in production
        self.DB_URL = "sqlite+aiosqlite:///ranked.db"

        self.USE_MESSAGE_QUEUE = False
        self.MQ_USER = "ranked-server"
        self.MQ_PASSWORD = "banana"
        self.MQ_SERVER = "127.0.0.1"
        self.MQ_PORT = 5672
        self.MQ_VHOST = "/ranked"
        self.MQ_EXCHANGE_NAME = "ranked"

        # Matchmaking queue
        self.QUEUE_CYCLE_INTERVAL = 5
        self.QUEUE_BATCH_SIZE = 10
        self.QUEUE_MAX_SIZE = 100
        self.QUEUE_MAX_PAIRING_ATTEMPTS = 10
        # Seconds in queue after which the wait bonus is maxed out
        self.QUEUE_MAX_WAIT = 60 * 60

        # Weights of the pairing cost components. Lower cost is better.
        self.PAIRING_WEIGHT_REGION = 0.6
        self.PAIRING_WEIGHT_RANK = 0.3
        self.PAIRING_WEIGHT_RATING = 0.2
        self.PAIRING_WEIGHT_WAIT = 0.1
        self.PAIRING_COST_THRESHOLD = 0.3

        self.REGION_DISTANCES = {
            "US-East": {"US-West": 1, "EU-West": 2, "Asia": 3},
            "US-West": {"US-East": 1, "EU-West": 2, "Asia": 2},
            "EU-West": {"US-East": 2, "US-West": 2, "Asia": 3},
            "Asia": {"US-East": 3, "US-West": 2, "EU-West": 3},
        }
        self.REGION_UNKNOWN_DISTANCE = 3
        # Pairs further apart than this are never considered
        self.REGION_MAX_DISTANCE = 2
        self.REGION_DISTANCE_DECAY = 0.2
        self.REGION_SCORE_FLOOR = 0.2
        self.RANK_TIER_DECAY = 0.1
        self.RANK_SCORE_FLOOR = 0.5
        # Rating gap at which the rating score reaches 0
        self.RATING_GAP_SCALE = 1000

        self.PAIR_PERSIST_ATTEMPTS = 3
        self.PAIR_PERSIST_BACKOFF = 0.3

        self.HYPERCHARGE_CHANCE = 0.1
        self.HYPERCHARGE_MULTIPLIER = 0.5

        # Pre game negotiation, all in seconds
        self.STAGE_BAN_TIMEOUT = 60
        self.CAPTAIN_PICK_TIMEOUT = 60
        self.HOST_SELECT_TIMEOUT = 30
        self.ROOM_CODE_TIMEOUT = 120
        self.ROOM_CODE_CONFIRM_TIMEOUT = 60
        self.ROOM_CODE_MAX_STRIKES = 5
        # Seconds without any answer before a negotiation is cancelled
        self.PREGAME_TIMEOUT = 10 * 60
        self.STAGES = [
            "Mario Stadium",
            "Luigi's Mansion",
            "Peach Ice Garden",
            "Daisy Cruiser",
            "Daisy Cruiser (Night)",
            "Yoshi Park",
            "Yoshi Park (Night)",
            "Wario City",
            "Bowser Jr. Playroom",
            "Bowser Castle",
        ]
        self.CAPTAINS = [
            "Mario",
            "Luigi",
            "Peach",
            "Daisy",
            "Yoshi",
            "Birdo",
            "Wario",
            "Waluigi",
            "Donkey Kong",
            "Diddy Kong",
            "Bowser",
            "Bowser Jr.",
        ]

        # Score reporting
        self.REPORT_TIMEOUT = 90 * 60
        self.SCORE_MAX = 99

        # Disputes
        self.DISPUTE_TIMEOUT = 24 * 60 * 60
        self.DISPUTE_WEIGHT_SCORE_MISMATCH = 1.0
        self.DISPUTE_WEIGHT_PLAYER_REQUEST = 1.5
        self.DISPUTE_REPEAT_MULTIPLIER = 1.2
        self.DISPUTE_REPEAT_CAP = 3
        self.DISPUTE_HYPERCHARGE_FACTOR = 1.2
        self.DISPUTE_HISTORY_DAYS = 7
        self.REVIEWER_MAX_ACTIVE = 10

        # Rating
        self.START_RATING = 0
        self.RATING_BASE_GAIN = 75
        self.RATING_DIFF_DIVISOR = 225
        self.RATING_DIFF_BONUS_CAP = 20
        self.RATING_MARGIN_MULTIPLIER = 3
        self.RATING_MARGIN_BONUS_CAP = 30
        self.RATING_STREAK_MULTIPLIER = 2
        self.RATING_STREAK_BONUS_CAP = 20
        self.RATING_WIN_MIN = 75
        self.RATING_WIN_MAX = 145
        self.RATING_LOSS_MIN = 50
        self.RATING_LOSS_MAX = 125
        self.FORFEIT_DELTA = 75
        # (rank, tier, minimum rating)
        self.RANK_THRESHOLDS = [
            ["BRONZE", "I", 0],
            ["BRONZE", "II", 500],
            ["BRONZE", "III", 1000],
            ["SILVER", "I", 1500],
            ["SILVER", "II", 2000],
            ["SILVER", "III", 2500],
            ["GOLD", "I", 3000],
            ["GOLD", "II", 3500],
            ["GOLD", "III", 4000],
            ["DIAMOND", "I", 4500],
            ["DIAMOND", "II", 5000],
            ["DIAMOND", "III", 5500],
            ["MYTHIC", "I", 6000],
            ["MYTHIC", "II", 6500],
            ["MYTHIC", "III", 7000],
            ["LEGENDARY", "I", 7500],
            ["LEGENDARY", "II", 8000],
            ["LEGENDARY", "III", 8500],
            ["MASTERS", "I", 9000],
        ]

        # Cancellation policy. Applies to players not at fault when a match
        # is cancelled before it started.
        self.CANCEL_COMPENSATION = 0
        self.REQUEUE_ON_CANCEL = False

        self._defaults = {
            key: value for key, value in vars(self).items() if key.isupper()
        }

        self._callbacks: dict[str, Callable] = {}
        self.refresh()

    def refresh(self) -> None:
        new_values = self._defaults.copy()

        config_file = os.getenv("CONFIGURATION_FILE")
        if config_file is not None:
            try:
                with open(config_file) as f:
                    new_values.update(yaml.safe_load(f))
            except FileNotFoundError:
                self._logger.warning(
                    "No configuration file found at %s",
                    config_file
                )
            except TypeError:
                self._logger.info(
                    "Configuration file at %s appears to be empty",
                    config_file
                )

        triggered_callback_keys = tuple(
            key
            for key in new_values
            if key in self._callbacks
            and hasattr(self, key)
            and getattr(self, key) != new_values[key]
        )

        for key, new_value in new_values.items():
            old_value = getattr(self, key, None)
            if new_value != old_value:
                self._logger.info(
                    "New value for %s: %r -> %r", key, old_value, new_value
                )
            setattr(self, key, new_value)

        for key in triggered_callback_keys:
            self._dispatch_callback(key)

    def register_callback(self, key: str, callback: Callable) -> None:
        self._callbacks[key.upper()] = callback

    def _dispatch_callback(self, key: str) -> None:
        callback = self._callbacks[key]
        if asyncio.iscoroutinefunction(callback):
            asyncio.create_task(callback())
        else:
            callback()


def set_log_level():
    logger = logging.getLogger()
    logger.setLevel(config.LOG_LEVEL)


config = ConfigurationStore()
config.register_callback("LOG_LEVEL", set_log_level)
