import logging

import pyarrow as pa
from pytest import mark, raises
from windowbatch.arrow import INDICES_SCHEMA, serialize_indices, serialize_rows
from windowbatch.config import EncoderConfig


def _read(data: bytes) -> pa.Table:
    return pa.ipc.open_file(pa.py_buffer(data)).read_all()


def test_serialize_mapping_rows(left_schema):
    rows = [
        {"time": 1, "id": "a", "price": 10.0},
        {"time": 2, "id": "b", "price": None},
        {"time": 3, "id": "a", "price": 12.5},
    ]
    pruned = pa.schema([("id", pa.string()), ("price", pa.float64())])

    table = _read(serialize_rows(rows, left_schema, pruned))

    assert table.schema.equals(pruned)
    assert table.to_pylist() == [
        {"id": "a", "price": 10.0},
        {"id": "b", "price": None},
        {"id": "a", "price": 12.5},
    ]


def test_serialize_sequence_rows(left_schema):
    rows = [(1, "a", 10.0), (2, "b", 11.0)]
    pruned = pa.schema([("price", pa.float64()), ("time", pa.int64())])

    table = _read(serialize_rows(rows, left_schema, pruned))

    assert table.to_pydict() == {"price": [10.0, 11.0], "time": [1, 2]}


def test_serialize_writes_one_batch(left_schema):
    rows = [(i, "x", float(i)) for i in range(100)]

    data = serialize_rows(rows, left_schema, left_schema)
    reader = pa.ipc.open_file(pa.py_buffer(data))

    assert reader.num_record_batches == 1
    assert reader.get_batch(0).num_rows == 100


def test_serialize_no_rows(left_schema):
    table = _read(serialize_rows([], left_schema, left_schema))

    assert table.num_rows == 0
    assert table.schema.equals(left_schema)


def test_serialize_compressed(left_schema):
    rows = [(i, "x" * 10, float(i)) for i in range(1_000)]
    config = EncoderConfig(compression="zstd")

    plain = serialize_rows(rows, left_schema, left_schema)
    compressed = serialize_rows(rows, left_schema, left_schema, config)

    assert len(compressed) < len(plain)
    assert _read(compressed).equals(_read(plain))


def test_serialize_missing_pruned_field_raises(left_schema):
    with raises(ValueError, match="not in schema"):
        serialize_rows([], left_schema, pa.schema([("missing", pa.int64())]))


def test_serialize_pruned_type_mismatch_raises(left_schema):
    with raises(ValueError, match="schema declares"):
        serialize_rows([], left_schema, pa.schema([("time", pa.string())]))


def test_serialize_bad_value_raises(left_schema):
    rows = [{"time": "not a number", "id": "a", "price": 1.0}]

    with raises(ValueError, match="can't encode column 'time'"):
        serialize_rows(rows, left_schema, left_schema)


def test_serialize_logs(left_schema, caplog):
    with caplog.at_level(logging.DEBUG, logger="windowbatch.arrow"):
        serialize_rows([(1, "a", 1.0)], left_schema, left_schema)

    assert "Encoded 1 rows" in caplog.text
    assert "Releasing arena" in caplog.text


def test_serialize_indices():
    table = _read(serialize_indices([0, 1, 4], [2, 3, 4]))

    assert table.schema.equals(INDICES_SCHEMA)
    assert table.to_pydict() == {"begin": [0, 1, 4], "end": [2, 3, 4]}


def test_serialize_indices_empty():
    assert _read(serialize_indices([], [])).num_rows == 0


def test_serialize_indices_length_mismatch_raises():
    with raises(ValueError, match="2 begin indices but 1 end indices"):
        serialize_indices([0, 1], [1])


@mark.parametrize("value", [2**31, -(2**31) - 1, 2**70])
def test_serialize_indices_out_of_range_raises(value):
    with raises(ValueError, match="can't encode column 'end' as int32"):
        serialize_indices([0], [value])


def test_serialize_releases_pool_memory(left_schema, pools):
    rows = [(i, "x" * 10, float(i)) for i in range(100)]

    for _ in range(10):
        serialize_rows(rows, left_schema, left_schema)
        serialize_indices(list(range(100)), list(range(1, 101)))

    assert len(pools) == 20
    for pool in pools:
        assert pool.max_memory() > 0
        assert pool.bytes_allocated() == 0


def test_serialize_error_releases_pool_memory(left_schema, pools):
    # `time` and `id` are built before `price` fails.
    rows = [{"time": i, "id": "a", "price": "not a number"} for i in range(100)]

    for _ in range(10):
        with raises(ValueError, match="can't encode column 'price'"):
            serialize_rows(rows, left_schema, left_schema)

    assert len(pools) == 10
    for pool in pools:
        assert pool.max_memory() > 0
        assert pool.bytes_allocated() == 0


def test_serialize_indices_error_releases_pool_memory(pools):
    with raises(ValueError, match="can't encode column 'end'"):
        serialize_indices(list(range(100)), [0] * 99 + [2**40])

    assert pools[0].max_memory() > 0
    assert pools[0].bytes_allocated() == 0
