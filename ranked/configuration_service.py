"""
Manages periodic reloading of config variables
"""

import asyncio

from .config import config
from .core import Service
from .decorators import with_logger
from .matchmaker.pairing import PairingParameters
from .pregame.rules import check_pregame_timeouts
from .rating_service import RankTable, RatingParameters


@with_logger
class ConfigurationService(Service):
    """
    Reloads the configuration file every `CONFIGURATION_REFRESH_TIME` seconds
    and checks that the rating, rank and negotiation settings it describes
    still make sense.
    Components read config values when they need them, so a bad value would
    otherwise only show up in the middle of rating a match.
    """

    def __init__(self) -> None:
        self._store = config
        self._task = None
        self.valid = True

    async def initialize(self) -> None:
        self._task = asyncio.create_task(self._worker_loop())
        self._logger.info("Configuration service initialized")

    async def _worker_loop(self) -> None:
        while True:
            try:
                self._logger.debug("Refreshing configuration variables")
                self._store.refresh()
                self.validate()
                await asyncio.sleep(self._store.CONFIGURATION_REFRESH_TIME)
            except Exception:
                self._logger.exception("Error while refreshing config")
                # To prevent a busy loop
                await asyncio.sleep(60)

    def validate(self) -> bool:
        """
        Build every parameter object from the current config. Returns `False`
        and logs the reason if any of them is rejected.
        """
        try:
            RatingParameters.from_config()
            RankTable.from_config()
            PairingParameters.from_config()
            check_pregame_timeouts()
        except (ValueError, TypeError, KeyError):
            self._logger.exception("Invalid ranked configuration")
            self.valid = False
        else:
            self.valid = True
        return self.valid

    async def shutdown(self) -> None:
        if self._task is not None:
            self._logger.info("Configuration service stopping.")
            self._task.cancel()
        self._task = None
