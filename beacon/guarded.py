"""Triple-redundant storage for small, safety-critical values."""
from .errors import MemoryCorruptionError


class GuardedValue:
    """Keep three copies of a value and refuse to hand out a disagreeing one.

    Some memory has ECC, some doesn't. Nobody should be declared dead because
    of a flipped bit, so a mismatch raises instead of picking a winner.
    Mutations go through set() while the owner's lock is held.
    """

    __slots__ = ("_a", "_b", "_c")

    def __init__(self, value):
        self._a = value
        self._b = value
        self._c = value

    def get(self):
        if self._a == self._b and self._b == self._c:
            return self._a
        raise MemoryCorruptionError(
            "guarded copies disagree: %r / %r / %r" % (self._a, self._b, self._c)
        )

    def set(self, value):
        self._a = value
        self._b = value
        self._c = value

    def __repr__(self):
        return "GuardedValue(%r)" % (self._a,)
