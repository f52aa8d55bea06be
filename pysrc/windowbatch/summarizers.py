"""Streaming aggregates that can grow, shrink, and combine.

A **summarizer** is a small set of functions over a piece of state:
build an empty state with {py:obj}`Summarizer.zero`, fold values into
it with {py:obj}`Summarizer.add`, combine two partial states with
{py:obj}`Summarizer.merge`, and read the current result with
{py:obj}`Summarizer.render`.

A **subtractable** summarizer additionally supports
{py:obj}`SubtractableSummarizer.subtract`, which removes the effect of
a value that was previously added. That makes it cheap to maintain an
aggregate over a sliding window: values are added as they enter the
window and subtracted as they leave it, rather than recomputing the
whole window each time.

Summarizer states may be mutated in place. Always use the returned
state from `add`, `subtract`, and `merge`, and don't reuse a state
after passing it to `merge`.

"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import reduce
from typing import Generic, Iterable, TypeVar

from typing_extensions import override

from windowbatch.errors import ProtocolError
from windowbatch.math import Kahan

T = TypeVar("T")
"""Type of input values."""


S = TypeVar("S")
"""Type of summarizer state."""


V = TypeVar("V")
"""Type of rendered output."""


class Summarizer(ABC, Generic[T, S, V]):
    """Abstract class to define a mergeable streaming aggregate."""

    @abstractmethod
    def zero(self) -> S:
        """Build a fresh, empty state.

        Merging the empty state with any other state must return the
        other state unchanged.

        """
        ...

    @abstractmethod
    def add(self, state: S, t: T) -> S:
        """Incorporate a single value.

        :arg state: Current state.

        :arg t: Value to add.

        :returns: The updated state. This might be the same object as
            `state`.

        """
        ...

    @abstractmethod
    def merge(self, state1: S, state2: S) -> S:
        """Combine two independently accumulated states.

        The result is as if all values of both sides were added to a
        single state.

        :arg state1: First partial state.

        :arg state2: Second partial state.

        :returns: The combined state. This might be one of the inputs.

        """
        ...

    @abstractmethod
    def render(self, state: S) -> V:
        """Read the current result.

        This never modifies `state` and can be called at any point,
        not just after the last value.

        """
        ...


class SubtractableSummarizer(Summarizer[T, S, V]):
    """Abstract class for a summarizer that can also remove values."""

    @abstractmethod
    def subtract(self, state: S, t: T) -> S:
        """Remove the effect of a previously added value.

        The caller is responsible for only subtracting values that
        were added and have not yet been subtracted; this is not
        verified.

        :arg state: Current state.

        :arg t: Value to remove.

        :returns: The updated state. This might be the same object as
            `state`.

        :raises ProtocolError: If `state` is empty.

        """
        ...


def _power(x: float, moment: int) -> float:
    try:
        return math.pow(x, moment)
    except OverflowError:
        # `math.pow` raises where IEEE arithmetic would saturate.
        if x < 0.0 and moment % 2 == 1:
            return -math.inf
        return math.inf


@dataclass
class NthMomentState:
    """State of a {py:obj}`NthMomentSummarizer`."""

    count: int = 0
    moment: Kahan = field(default_factory=Kahan)


@dataclass(frozen=True)
class NthMomentSummarizer(SubtractableSummarizer[float, NthMomentState, float]):
    """Running mean of each value raised to the `moment` power.

    With `moment=1` this is the running mean. For larger moments this
    is the mean of `value ** moment`, i.e. the raw (non-central)
    moment. Combine it with the mean yourself to get variance or
    skewness.

    The mean is updated incrementally with compensated summation, so
    adding and subtracting many values does not accumulate much
    rounding error.

    This summarizer mutates its state.

    """

    moment: int

    def __post_init__(self) -> None:
        if (
            not isinstance(self.moment, int)
            or isinstance(self.moment, bool)
            or self.moment < 0
        ):
            msg = f"`moment` must be a non-negative integer; got {self.moment!r}"
            raise ValueError(msg)

    @override
    def zero(self) -> NthMomentState:
        return NthMomentState()

    @override
    def add(self, state: NthMomentState, t: float) -> NthMomentState:
        new_count = state.count + 1
        data = _power(t, self.moment)
        if new_count == 1:
            state.moment.add(data)
        else:
            delta = data - state.moment.value
            state.moment.add(delta / new_count)
        state.count = new_count

        return state

    @override
    def subtract(self, state: NthMomentState, t: float) -> NthMomentState:
        if state.count == 0:
            msg = "can't subtract from an empty nth moment state"
            raise ProtocolError(msg)

        # Start over rather than dividing by zero or keeping residue.
        if state.count == 1:
            return self.zero()

        new_count = state.count - 1
        data = _power(t, self.moment)
        delta = data - state.moment.value
        state.moment.add(-delta / new_count)
        state.count = new_count

        return state

    @override
    def merge(self, state1: NthMomentState, state2: NthMomentState) -> NthMomentState:
        if state1.count == 0:
            return state2
        elif state2.count == 0:
            return state1
        else:
            new_count = state1.count + state2.count
            delta = state2.moment.value - state1.moment.value
            state1.moment.add(state2.count * delta / new_count)
            state1.count = new_count

            return state1

    @override
    def render(self, state: NthMomentState) -> float:
        return state.moment.value


class CountSummarizer(SubtractableSummarizer[object, int, int]):
    """Number of values currently in the aggregate."""

    @override
    def zero(self) -> int:
        return 0

    @override
    def add(self, state: int, t: object) -> int:
        return state + 1

    @override
    def subtract(self, state: int, t: object) -> int:
        if state == 0:
            msg = "can't subtract from an empty count"
            raise ProtocolError(msg)
        return state - 1

    @override
    def merge(self, state1: int, state2: int) -> int:
        return state1 + state2

    @override
    def render(self, state: int) -> int:
        return state


@dataclass
class SumState:
    """State of a {py:obj}`SumSummarizer`."""

    count: int = 0
    total: Kahan = field(default_factory=Kahan)


class SumSummarizer(SubtractableSummarizer[float, SumState, float]):
    """Compensated sum of values.

    This summarizer mutates its state.

    """

    @override
    def zero(self) -> SumState:
        return SumState()

    @override
    def add(self, state: SumState, t: float) -> SumState:
        state.total.add(t)
        state.count += 1
        return state

    @override
    def subtract(self, state: SumState, t: float) -> SumState:
        if state.count == 0:
            msg = "can't subtract from an empty sum"
            raise ProtocolError(msg)

        if state.count == 1:
            return self.zero()

        state.total.add(-t)
        state.count -= 1
        return state

    @override
    def merge(self, state1: SumState, state2: SumState) -> SumState:
        if state1.count == 0:
            return state2
        elif state2.count == 0:
            return state1
        else:
            state1.total.merge(state2.total)
            state1.count += state2.count
            return state1

    @override
    def render(self, state: SumState) -> float:
        return state.total.value


def summarize(summarizer: Summarizer[T, S, V], values: Iterable[T]) -> V:
    """Add all values to a fresh state and render the result.

    >>> summarize(NthMomentSummarizer(1), [1.0, 2.0, 3.0])
    2.0

    """
    state = summarizer.zero()
    for value in values:
        state = summarizer.add(state, value)
    return summarizer.render(state)


def merge_all(summarizer: Summarizer[T, S, V], states: Iterable[S]) -> S:
    """Combine many partial states into one.

    Useful for reducing per-partition aggregates. Returns the empty
    state if there are no partial states.

    """
    return reduce(summarizer.merge, states, summarizer.zero())
