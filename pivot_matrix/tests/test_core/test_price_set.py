"""Tests for PriceSet — epsilon membership over a sorted sequence."""

from pivot_matrix.core.price_set import PRICE_EPSILON, PriceSet, prices_match


class TestPriceSet:
    def test_membership_within_epsilon(self):
        ps = PriceSet()
        ps.add(100.0)
        assert 100.0 in ps
        assert 100.0 + PRICE_EPSILON / 2 in ps
        assert 100.0 - PRICE_EPSILON / 2 in ps
        assert 100.02 not in ps

    def test_float_drift_is_same_price(self):
        ps = PriceSet()
        ps.add(0.1 + 0.2)
        assert 0.3 in ps

    def test_add_is_idempotent(self):
        ps = PriceSet()
        assert ps.add(4321.25) is True
        assert ps.add(4321.2500001) is False
        assert len(ps) == 1

    def test_kept_sorted(self):
        ps = PriceSet()
        for p in (105.0, 95.0, 100.0):
            ps.add(p)
        assert list(ps) == [95.0, 100.0, 105.0]

    def test_find_returns_closest_stored(self):
        ps = PriceSet(epsilon=0.5)
        ps.add(100.0)
        ps.add(100.6)
        assert ps.find(100.4) == 100.6
        assert ps.find(101.5) is None

    def test_prices_match(self):
        assert prices_match(1.0, 1.005)
        assert not prices_match(1.0, 1.01)
