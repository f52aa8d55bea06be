from pytest import approx, raises
from windowbatch.errors import ProtocolError
from windowbatch.rolling import delta_mapper, window_mapper
from windowbatch.summarizers import NthMomentSummarizer, SumSummarizer


def test_delta_mapper_mean():
    mapper = delta_mapper(NthMomentSummarizer(1))

    state, emit = mapper(None, [1.0, 2.0, 3.0], [])
    assert list(emit) == [2.0]

    state, emit = mapper(state, [4.0], [1.0])
    assert list(emit) == [3.0]

    state, emit = mapper(state, [], [2.0, 3.0])
    assert list(emit) == [4.0]
    assert state.count == 1


def test_delta_mapper_matches_window_mapper():
    values = [5.0, 1.0, -2.0, 8.0, 3.0, 3.0, 0.5]
    length = 3
    delta = delta_mapper(SumSummarizer())
    full = window_mapper(SumSummarizer())

    state = None
    for i, value in enumerate(values):
        removed = [values[i - length]] if i >= length else []
        state, emit = delta(state, [value], removed)
        window = values[max(0, i - length + 1) : i + 1]

        assert list(emit) == approx(list(full(window)))


def test_delta_mapper_remove_too_many_raises():
    mapper = delta_mapper(NthMomentSummarizer(1))
    state, _ = mapper(None, [1.0], [])

    with raises(ProtocolError):
        mapper(state, [], [1.0, 1.0])


def test_window_mapper_empty_window():
    mapper = window_mapper(SumSummarizer())

    assert list(mapper([])) == [0.0]
