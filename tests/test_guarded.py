"""Tests for beacon.guarded: GuardedValue."""
import pytest

from beacon.errors import InvariantViolation, MemoryCorruptionError
from beacon.guarded import GuardedValue
from beacon.liveness import LifeState


class TestRead:

    def test_returns_stored_value(self):
        assert GuardedValue(1_700_000_000).get() == 1_700_000_000

    def test_works_with_state_enum(self):
        assert GuardedValue(LifeState.PROBABLY_ALIVE).get() is LifeState.PROBABLY_ALIVE

    def test_set_replaces_all_copies(self):
        value = GuardedValue(1)
        value.set(2)
        assert value.get() == 2


class TestCorruption:

    @pytest.mark.parametrize("slot", ["_a", "_b", "_c"])
    def test_any_disagreeing_copy_raises(self, slot):
        value = GuardedValue(LifeState.ALIVE)
        setattr(value, slot, LifeState.DEAD)
        with pytest.raises(MemoryCorruptionError):
            value.get()

    def test_corruption_is_an_invariant_violation(self):
        value = GuardedValue(10)
        value._b = 11
        with pytest.raises(InvariantViolation):
            value.get()

    def test_only_a_full_rewrite_clears_a_mismatch(self):
        value = GuardedValue(10)
        value._c = 99
        with pytest.raises(MemoryCorruptionError):
            value.get()
        value.set(12)
        assert value.get() == 12
