"""Numerically stable building blocks for streaming aggregates."""

from dataclasses import dataclass

from typing_extensions import Self


@dataclass
class Kahan:
    """Accumulator implementing Kahan compensated summation.

    Repeatedly calling {py:obj}`add` keeps a running compensation term
    for the low-order bits lost to rounding, so the total drifts much
    less than a naive `+=` loop.

    This is mutable; {py:obj}`add` and {py:obj}`merge` update the
    accumulator in place and return it so calls can be chained.

    Non-finite values are not rejected. Adding a NaN or an infinity
    makes the running value non-finite.

    See <https://en.wikipedia.org/wiki/Kahan_summation_algorithm>.

    """

    value: float = 0.0
    """Current compensated sum."""

    compensation: float = 0.0
    """Rounding error not yet folded back into `value`."""

    def add(self, x: float) -> Self:
        """Add a single value.

        :arg x: Value to add.

        :returns: This accumulator.

        """
        y = x - self.compensation
        t = self.value + y
        self.compensation = (t - self.value) - y
        self.value = t
        return self

    def merge(self, other: "Kahan") -> Self:
        """Fold another accumulator into this one.

        `other` is not modified.

        :arg other: Accumulator to combine.

        :returns: This accumulator.

        """
        self.add(other.value)
        self.add(-other.compensation)
        return self
