import pytest
from hypothesis import given

from ranked.config import config
from ranked.matchmaker import PairingAlgorithm, PairingParameters
from ranked.timing import datetime_now

from .strategies import NOW, st_batches


@pytest.fixture
def algorithm():
    return PairingAlgorithm()


@pytest.fixture
def params():
    return PairingParameters.from_config()


def test_cost_of_close_players(algorithm, entry_factory):
    now = datetime_now()
    a = entry_factory(1, rating=1000, now=now)
    b = entry_factory(2, rating=1050, now=now)

    # rating 0.2 * 0.05 + wait 0.1 * 1
    assert algorithm.cost(a, b, now) == pytest.approx(0.11)


def test_cost_is_symmetric(algorithm, entry_factory):
    now = datetime_now()
    a = entry_factory(1, rating=1000, region="US-East", waited=100, now=now)
    b = entry_factory(2, rating=1700, region="US-West", now=now)

    assert algorithm.cost(a, b, now) == pytest.approx(algorithm.cost(b, a, now))


def test_cost_excludes_distant_regions(algorithm, entry_factory):
    now = datetime_now()
    a = entry_factory(1, region="US-East", now=now)
    b = entry_factory(2, region="Asia", now=now)
    c = entry_factory(3, region="Atlantis", now=now)

    assert algorithm.cost(a, b, now) is None
    assert algorithm.cost(a, c, now) is None


def test_region_distance(params):
    assert params.region_distance("US-East", "US-East") == 0
    assert params.region_distance("US-East", "US-West") == 1
    assert params.region_distance("Atlantis", "US-West") == config.REGION_UNKNOWN_DISTANCE


def test_region_distance_only_one_direction_listed():
    params = PairingParameters(region_distances={"A": {"B": 2}})

    assert params.region_distance("B", "A") == 2


def test_scores_have_floors(params):
    assert params.region_score(2) == pytest.approx(0.6)
    assert params.region_score(3) is None
    assert params.rank_score(3) == pytest.approx(0.7)
    assert params.rank_score(100) == params.rank_floor
    assert params.rating_score(5000) == 0.0
    assert params.wait_bonus(params.max_wait * 2) == 1.0
    assert params.wait_bonus(-10) == 0.0


def test_find_pairs_two_players(algorithm, entry_factory):
    now = datetime_now()
    a = entry_factory(1, rating=1000, now=now)
    b = entry_factory(2, rating=1050, now=now)

    pairs, unmatched = algorithm.find_pairs([a, b], now)

    assert [(x.user_id, y.user_id) for x, y, _ in pairs] == [(1, 2)]
    assert pairs[0][2] == pytest.approx(0.11)
    assert unmatched == []


def test_find_pairs_rejects_expensive_pairs(algorithm, entry_factory):
    now = datetime_now()
    a = entry_factory(1, rating=0, now=now)
    b = entry_factory(2, rating=9000, now=now)

    pairs, unmatched = algorithm.find_pairs([a, b], now)

    assert pairs == []
    assert unmatched == [a, b]


def test_find_pairs_prefers_same_region(algorithm, entry_factory):
    now = datetime_now()
    a = entry_factory(1, rating=1000, region="US-East", waited=30, now=now)
    # Cheaper, but in another region
    b = entry_factory(2, rating=1000, region="US-West", waited=20, now=now)
    c = entry_factory(3, rating=1600, region="US-East", waited=10, now=now)

    assert algorithm.cost(a, b, now) < algorithm.cost(a, c, now)

    pairs, unmatched = algorithm.find_pairs([a, b, c], now)

    assert [(x.user_id, y.user_id) for x, y, _ in pairs] == [(1, 3)]
    assert unmatched == [b]


def test_find_pairs_falls_back_to_other_regions(algorithm, entry_factory):
    now = datetime_now()
    a = entry_factory(1, rating=1000, region="US-East", now=now)
    b = entry_factory(2, rating=1000, region="US-West", now=now)

    pairs, _ = algorithm.find_pairs([a, b], now)

    assert len(pairs) == 1


def test_waiting_makes_pairs_acceptable(algorithm, entry_factory):
    now = datetime_now()
    a = entry_factory(1, rating=1000, region="US-East", now=now)
    b = entry_factory(2, rating=1600, region="US-West", now=now)

    assert algorithm.find_pairs([a, b], now)[0] == []

    a = entry_factory(1, rating=1000, region="US-East", waited=3600, now=now)
    pairs, _ = algorithm.find_pairs([a, b], now)

    assert len(pairs) == 1
    assert pairs[0][2] == pytest.approx(0.27)


def test_find_pairs_oldest_first(algorithm, entry_factory):
    now = datetime_now()
    c = entry_factory(3, rating=1000, waited=10, now=now)
    b = entry_factory(2, rating=1000, waited=20, now=now)
    a = entry_factory(1, rating=1000, waited=30, now=now)

    pairs, unmatched = algorithm.find_pairs([c, b, a], now)

    assert [(x.user_id, y.user_id) for x, y, _ in pairs] == [(1, 2)]
    assert unmatched == [c]


def test_find_pairs_empty(algorithm):
    assert algorithm.find_pairs([], datetime_now()) == ([], [])


def test_explicit_parameters(entry_factory):
    now = datetime_now()
    algorithm = PairingAlgorithm(PairingParameters(threshold=0.05))
    a = entry_factory(1, rating=1000, now=now)
    b = entry_factory(2, rating=1050, now=now)

    assert algorithm.find_pairs([a, b], now)[0] == []


@given(batch=st_batches())
def test_find_pairs_partitions_batch(batch):
    algorithm = PairingAlgorithm(PairingParameters.from_config())
    pairs, unmatched = algorithm.find_pairs(batch, NOW)

    paired = [e.user_id for a, b, _ in pairs for e in (a, b)]
    assert len(paired) == len(set(paired))
    assert sorted(paired + [e.user_id for e in unmatched]) == sorted(
        e.user_id for e in batch
    )
    for a, b, cost in pairs:
        assert cost <= algorithm.params.threshold
        assert algorithm.cost(a, b, NOW) == pytest.approx(cost)
