"""Encode rows and window indices as Arrow record batches.

Each encode call produces the bytes of a complete [Arrow IPC
file](https://arrow.apache.org/docs/format/Columnar.html#ipc-file-format)
containing a schema header and exactly one record batch. Any Arrow
reader can map the buffers directly:

```python
import pyarrow as pa

table = pa.ipc.open_file(pa.py_buffer(data)).read_all()
```

Rows are projected to a **pruned schema** before encoding so only the
columns needed downstream are written. A row can be a mapping, in
which case columns are looked up by field name, or a sequence, in
which case columns are looked up by their position in the full
schema.

Every call allocates from its own proxy memory pool and output
buffer. The writer and buffer are closed before returning, whether or
not encoding succeeded; errors propagate to the caller.

"""

import logging
import traceback
from typing import Any, Callable, List, Mapping, Optional, Sequence

import pyarrow as pa  # type: ignore

from windowbatch.config import EncoderConfig

__all__ = [
    "BEGIN_INDEX_COLUMN",
    "END_INDEX_COLUMN",
    "INDICES_SCHEMA",
    "serialize_indices",
    "serialize_rows",
    "validate_pruned_schema",
]

logger = logging.getLogger(__name__)

BEGIN_INDEX_COLUMN = "begin"
"""Column holding each window's first right row offset."""

END_INDEX_COLUMN = "end"
"""Column holding each window's one-past-last right row offset."""

INDICES_SCHEMA: pa.Schema = pa.schema(
    [
        pa.field(BEGIN_INDEX_COLUMN, pa.int32()),
        pa.field(END_INDEX_COLUMN, pa.int32()),
    ]
)
"""Schema of the encoded window index batch."""


def validate_pruned_schema(schema: pa.Schema, pruned_schema: pa.Schema) -> None:
    """Check a pruned schema is a projection of a full schema.

    :arg schema: Full row schema.

    :arg pruned_schema: Columns to keep.

    :raises ValueError: If a pruned field is missing from the full
        schema or has a different type.

    """
    for pruned_field in pruned_schema:
        idx = schema.get_field_index(pruned_field.name)
        if idx < 0:
            msg = (
                f"pruned field {pruned_field.name!r} is not in schema "
                f"with fields {schema.names!r}"
            )
            raise ValueError(msg)

        full_type = schema.field(idx).type
        if not full_type.equals(pruned_field.type):
            msg = (
                f"pruned field {pruned_field.name!r} has type "
                f"{pruned_field.type}; schema declares {full_type}"
            )
            raise ValueError(msg)


def _getter(schema: pa.Schema, name: str) -> Callable[[Any], Any]:
    idx = schema.get_field_index(name)

    def getter(row: Any) -> Any:
        if isinstance(row, Mapping):
            return row[name]
        return row[idx]

    return getter


def _clear_frames(ex: BaseException) -> None:
    # Arrays left in finished frames of the traceback must be freed
    # while their pool still exists.
    seen = set()
    cur: Optional[BaseException] = ex
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        traceback.clear_frames(cur.__traceback__)
        cur = cur.__cause__ or cur.__context__


def _write(
    build: Callable[[pa.MemoryPool], pa.RecordBatch],
    pool: pa.MemoryPool,
    config: EncoderConfig,
) -> bytes:
    batch = build(pool)
    sink = pa.BufferOutputStream(memory_pool=pool)
    try:
        with pa.ipc.new_file(
            sink, batch.schema, options=config.write_options()
        ) as writer:
            writer.write_batch(batch)
        data = sink.getvalue().to_pybytes()
    finally:
        if not sink.closed:
            sink.close()

    logger.debug("Encoded %s rows into %s bytes", batch.num_rows, len(data))
    return data


def _encode(
    build: Callable[[pa.MemoryPool], pa.RecordBatch], config: EncoderConfig
) -> bytes:
    """Build and write one batch inside a private memory pool.

    Arrow buffers do not keep their pool alive, so everything `build`
    allocates lives only in the frames of {py:obj}`_write` and is
    gone before the pool is. Only the copied `bytes` escape.

    """
    pool = pa.proxy_memory_pool(pa.default_memory_pool())
    try:
        return _write(build, pool, config)
    except BaseException as ex:
        _clear_frames(ex)
        raise
    finally:
        logger.debug("Releasing arena; peak memory %s bytes", pool.max_memory())
        pool.release_unused()


def serialize_rows(
    rows: Sequence[Any],
    schema: pa.Schema,
    pruned_schema: pa.Schema,
    config: Optional[EncoderConfig] = None,
) -> bytes:
    """Encode rows projected to a pruned schema.

    :arg rows: Rows conforming to `schema`. Order is preserved.

    :arg schema: Full row schema.

    :arg pruned_schema: Columns to write. Must be a projection of
        `schema`.

    :arg config: Encoder settings. Defaults to uncompressed.

    :returns: Bytes of an Arrow IPC file with one record batch.

    """
    if config is None:
        config = EncoderConfig()
    validate_pruned_schema(schema, pruned_schema)

    def build(pool: pa.MemoryPool) -> pa.RecordBatch:
        columns: List[pa.Array] = []
        for pruned_field in pruned_schema:
            get = _getter(schema, pruned_field.name)
            columns.append(
                _column(
                    [get(row) for row in rows],
                    pruned_field.name,
                    pruned_field.type,
                    pool,
                )
            )
        return pa.RecordBatch.from_arrays(columns, schema=pruned_schema)

    return _encode(build, config)


def _column(
    values: List[Any], name: str, typ: pa.DataType, pool: pa.MemoryPool
) -> pa.Array:
    try:
        return pa.array(values, type=typ, memory_pool=pool)
    except (pa.ArrowInvalid, pa.ArrowTypeError, OverflowError) as ex:
        msg = f"can't encode column {name!r} as {typ}"
        raise ValueError(msg) from ex


def serialize_indices(
    begin_indices: Sequence[int],
    end_indices: Sequence[int],
    config: Optional[EncoderConfig] = None,
) -> bytes:
    """Encode aligned window begin and end offsets.

    :arg begin_indices: First right row offset of each window.

    :arg end_indices: One-past-last right row offset of each window.

    :arg config: Encoder settings. Defaults to uncompressed.

    :returns: Bytes of an Arrow IPC file with one record batch of
        {py:obj}`INDICES_SCHEMA`.

    """
    if len(begin_indices) != len(end_indices):
        msg = (
            f"got {len(begin_indices)} begin indices but "
            f"{len(end_indices)} end indices"
        )
        raise ValueError(msg)
    if config is None:
        config = EncoderConfig()

    def build(pool: pa.MemoryPool) -> pa.RecordBatch:
        return pa.RecordBatch.from_arrays(
            [
                _column(list(begin_indices), BEGIN_INDEX_COLUMN, pa.int32(), pool),
                _column(list(end_indices), END_INDEX_COLUMN, pa.int32(), pool),
            ],
            schema=INDICES_SCHEMA,
        )

    return _encode(build, config)
