"""Adapt summarizers to rolling window callbacks.

Rolling window operators in stream processors call a mapper whenever
values enter or leave the window. Those mappers come in two shapes:
one that sees the whole current window, and one that only sees the
values that were just `added` and `removed` along with some persistent
state. The second is much cheaper for long windows, and is exactly
what a {py:obj}`~windowbatch.summarizers.SubtractableSummarizer` is
for.

```python
from windowbatch.rolling import delta_mapper
from windowbatch.summarizers import NthMomentSummarizer

mapper = delta_mapper(NthMomentSummarizer(1))
state, emit = mapper(None, [1.0, 2.0, 3.0], [])
state, emit = mapper(state, [4.0], [1.0])
assert emit == [3.0]
```

"""

from typing import Callable, Iterable, List, Optional, Tuple

from windowbatch.summarizers import S, SubtractableSummarizer, Summarizer, T, V


def delta_mapper(
    summarizer: SubtractableSummarizer[T, S, V],
) -> Callable[[Optional[S], List[T], List[T]], Tuple[Optional[S], Iterable[V]]]:
    """Build an incremental rolling mapper from a summarizer.

    The returned mapper takes the previous state (or `None` on the
    first call), the values that entered the window, and the values
    that left it, and returns a 2-tuple of `(updated_state,
    emit_values)`. Removed values are subtracted after added values
    are added, and the rendered value is emitted once per call.

    :arg summarizer: Aggregate to maintain.

    :returns: A mapper function.

    """

    def mapper(
        state: Optional[S], added: List[T], removed: List[T]
    ) -> Tuple[Optional[S], Iterable[V]]:
        if state is None:
            state = summarizer.zero()

        for value in added:
            state = summarizer.add(state, value)
        for value in removed:
            state = summarizer.subtract(state, value)

        return (state, [summarizer.render(state)])

    return mapper


def window_mapper(
    summarizer: Summarizer[T, S, V],
) -> Callable[[List[T]], Iterable[V]]:
    """Build a rolling mapper that recomputes over the whole window.

    Use this for summarizers that can't subtract.

    :arg summarizer: Aggregate to compute.

    :returns: A mapper function taking the current window and
        returning a single rendered value to emit.

    """

    def mapper(window: List[T]) -> Iterable[V]:
        state = summarizer.zero()
        for value in window:
            state = summarizer.add(state, value)
        return [summarizer.render(state)]

    return mapper
