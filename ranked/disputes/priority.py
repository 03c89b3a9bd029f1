from ..config import config
from ..matches.enums import DisputeOrigin


def origin_weight(origin: DisputeOrigin) -> float:
    if origin is DisputeOrigin.PLAYER_REQUEST:
        return config.DISPUTE_WEIGHT_PLAYER_REQUEST
    return config.DISPUTE_WEIGHT_SCORE_MISMATCH


def repeat_multiplier(history_count: int) -> float:
    """
    Grows with the number of recent disputes, up to `DISPUTE_REPEAT_CAP`
    of them.
    """
    count = min(max(history_count, 0), config.DISPUTE_REPEAT_CAP)
    return config.DISPUTE_REPEAT_MULTIPLIER ** count


def dispute_priority(
    origin: DisputeOrigin,
    history_count: int,
    is_hypercharged: bool
) -> float:
    """
    `weight(origin) * repeat_multiplier(history) * hypercharge_factor`.
    Higher priorities are reviewed first.
    """
    factor = config.DISPUTE_HYPERCHARGE_FACTOR if is_hypercharged else 1.0
    return origin_weight(origin) * repeat_multiplier(history_count) * factor
