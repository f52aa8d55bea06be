"""Collect per-row window contents into one batch.

A **window batch** pairs each row of a primary ("left") series with
the slice of a companion ("right") series that falls in that row's
window. Right rows are grouped by a **secondary key** (SK); each SK
has its own independent window.

Which right rows belong to which window is decided elsewhere. That
driver walks both series in order and calls a
{py:obj}`WindowBatchSummarizer` in this protocol:

1. {py:obj}`~WindowBatchSummarizer.zero` to start a batch.

2. For each left row, {py:obj}`~WindowBatchSummarizer.add_left`, then
   any number of {py:obj}`~WindowBatchSummarizer.add_right` (a right
   row entered the window of its SK) and
   {py:obj}`~WindowBatchSummarizer.subtract_right` (the oldest right
   row of its SK left the window), then exactly one
   {py:obj}`~WindowBatchSummarizer.commit_left` once the window for
   that left row is complete.

3. {py:obj}`~WindowBatchSummarizer.render` exactly once at the end of
   the batch.

Right rows are never deleted. Each SK keeps an append-only list and a
pair of cursors; subtracting only advances the begin cursor. On
render, the per-SK lists are concatenated into a single array and each
left row's `(begin, end)` cursors are rebased to offsets into it.

```python
import pyarrow as pa
from windowbatch.window import ArrayWindowBatchSummarizer

schema = pa.schema([("v", pa.int64())])
summarizer = ArrayWindowBatchSummarizer(schema, schema)
state = summarizer.zero()
summarizer.add_left(state, "A", {"v": 0})
summarizer.add_right(state, "A", {"v": 1})
summarizer.commit_left(state, "A", {"v": 0})
batch = summarizer.render(state)
assert batch.indices == [(0, 1)]
```

"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

import pyarrow as pa  # type: ignore
from typing_extensions import override

from windowbatch._utils import first_seen
from windowbatch.arrow import (
    BEGIN_INDEX_COLUMN,
    END_INDEX_COLUMN,
    serialize_indices,
    serialize_rows,
    validate_pruned_schema,
)
from windowbatch.config import EncoderConfig
from windowbatch.errors import ProtocolError

__all__ = [
    "ArrayWindowBatch",
    "ArrayWindowBatchSummarizer",
    "ArrowWindowBatch",
    "ArrowWindowBatchSummarizer",
    "WindowBatchSummarizer",
    "WindowState",
]

logger = logging.getLogger(__name__)

BASE_ROWS_COLUMN = "__window_baseRows"
LEFT_BATCH_COLUMN = "__window_leftBatch"
LEFT_LENGTH_COLUMN = "__window_leftLength"
RIGHT_BATCH_COLUMN = "__window_rightBatch"
RIGHT_LENGTH_COLUMN = "__window_rightLength"
INDICES_COLUMN = "__window_indices"

K = TypeVar("K", bound=Hashable)
"""Type of secondary keys."""


L = TypeVar("L")
"""Type of left rows."""


R = TypeVar("R")
"""Type of right rows."""


W = TypeVar("W")
"""Type of rendered window batches."""


@dataclass
class WindowState(Generic[K, L, R]):
    """Mutable contents of a single window batch.

    `left_rows`, `sks`, `begin_indices`, and `end_indices` are
    parallel lists with one entry per left row; the last left row may
    not have its indices yet until it is committed.

    Before {py:obj}`finalize`, `begin_indices` and `end_indices` are
    offsets into the right row list of that row's SK. After, they are
    offsets into `right_rows`.

    """

    left_rows: List[L] = field(default_factory=list)
    sks: List[K] = field(default_factory=list)
    right_rows_map: Dict[K, List[R]] = field(default_factory=dict)
    """Right rows grouped by SK, in arrival order. Append only."""

    begin_indices: List[int] = field(default_factory=list)
    end_indices: List[int] = field(default_factory=list)
    current_begin_indices: Dict[K, int] = field(default_factory=dict)
    """Number of right rows that have left the window, per SK."""

    current_end_indices: Dict[K, int] = field(default_factory=dict)
    """Number of right rows that have entered the window, per SK."""

    right_rows: Optional[List[R]] = None
    """All referenced right rows in one list. `None` until
    {py:obj}`finalize`."""

    def is_finalized(self) -> bool:
        return self.right_rows is not None

    def finalize(self) -> Dict[K, int]:
        """Concatenate right rows and rebase every window to it.

        Only SKs that some left row references are kept. They are laid
        out in the order each first appears in `sks`.

        :returns: The base offset of each kept SK.

        :raises ProtocolError: If already finalized or a left row was
            never committed.

        """
        if self.right_rows is not None:
            msg = "window batch state was already finalized"
            raise ProtocolError(msg)
        if len(self.begin_indices) != len(self.left_rows):
            msg = (
                f"can't finalize with {len(self.left_rows)} left rows but "
                f"only {len(self.begin_indices)} committed"
            )
            raise ProtocolError(msg)

        right_rows: List[R] = []
        base_indices: Dict[K, int] = {}
        for sk in first_seen(self.sks):
            base_indices[sk] = len(right_rows)
            right_rows += self.right_rows_map.get(sk, [])

        for i, sk in enumerate(self.sks):
            base_index = base_indices[sk]
            self.begin_indices[i] += base_index
            self.end_indices[i] += base_index

        self.right_rows = right_rows
        return base_indices


def _init_sk(state: WindowState[K, L, R], sk: K) -> List[R]:
    rows: List[R] = []
    state.right_rows_map[sk] = rows
    state.current_begin_indices[sk] = 0
    state.current_end_indices[sk] = 0
    return rows


class WindowBatchSummarizer(ABC, Generic[K, L, R, W]):
    """Abstract class to collect window contents and render a batch.

    Subclasses define the output format with {py:obj}`render_output`
    and {py:obj}`schema`. Each instance is independent and keeps no
    state of its own; all state lives in the {py:obj}`WindowState`
    passed to each call.

    """

    def __init__(self, left_schema: pa.Schema, right_schema: pa.Schema):
        self.left_schema = left_schema
        self.right_schema = right_schema

    def zero(self) -> WindowState[K, L, R]:
        """Start a new, empty batch."""
        return WindowState()

    def add_left(self, state: WindowState[K, L, R], sk: K, row: L) -> None:
        """Append a left row whose window is not yet known.

        :raises ProtocolError: If the previous left row was never
            committed.

        """
        n = len(state.left_rows)
        if not (
            n == len(state.sks) == len(state.begin_indices) == len(state.end_indices)
        ):
            msg = (
                "window batch state lists are out of step: "
                f"{n} left rows, {len(state.sks)} SKs, "
                f"{len(state.begin_indices)} begin indices, "
                f"{len(state.end_indices)} end indices; "
                "was `commit_left` called for every left row?"
            )
            raise ProtocolError(msg)

        state.left_rows.append(row)
        state.sks.append(sk)

    def add_right(self, state: WindowState[K, L, R], sk: K, row: R) -> None:
        """A right row entered the window for `sk`."""
        rows = state.right_rows_map.get(sk)
        if rows is None:
            rows = _init_sk(state, sk)
        rows.append(row)
        state.current_end_indices[sk] += 1

    def subtract_right(self, state: WindowState[K, L, R], sk: K, row: R) -> None:
        """The oldest right row in the window for `sk` left it.

        The row stays stored; only the window's begin cursor moves.

        :raises ProtocolError: If `sk` has no right rows left in its
            window.

        """
        begin = state.current_begin_indices.get(sk)
        if begin is None or begin >= state.current_end_indices[sk]:
            msg = f"can't subtract right row for SK {sk!r}; its window is empty"
            raise ProtocolError(msg)
        state.current_begin_indices[sk] = begin + 1

    def commit_left(self, state: WindowState[K, L, R], sk: K, row: L) -> None:
        """Record the current window of `sk` for the last left row.

        :raises ProtocolError: If there is no uncommitted left row.

        """
        if len(state.begin_indices) != len(state.left_rows) - 1:
            msg = (
                f"can't commit left row for SK {sk!r}; "
                f"{len(state.left_rows)} left rows added but "
                f"{len(state.begin_indices)} already committed"
            )
            raise ProtocolError(msg)

        state.begin_indices.append(state.current_begin_indices.get(sk, 0))
        state.end_indices.append(state.current_end_indices.get(sk, 0))

    def render(self, state: WindowState[K, L, R]) -> W:
        """Finalize the batch and render it.

        This can only be called once per state.

        :raises ProtocolError: If already rendered or a left row was
            never committed.

        """
        state.finalize()
        assert state.right_rows is not None
        logger.debug(
            "Rendering window batch of %s left rows and %s right rows",
            len(state.left_rows),
            len(state.right_rows),
        )
        return self.render_output(state)

    @property
    @abstractmethod
    def schema(self) -> pa.Schema:
        """Schema of the rendered output record."""
        ...

    @abstractmethod
    def render_output(self, state: WindowState[K, L, R]) -> W:
        """Build the output from a finalized state."""
        ...


@dataclass(frozen=True)
class ArrayWindowBatch(Generic[L, R]):
    """Window batch contents as plain lists."""

    left_batch: List[L]
    right_batch: List[R]
    indices: List[Tuple[int, int]]
    """`(begin, end)` offsets into `right_batch` for each left row."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            LEFT_BATCH_COLUMN: self.left_batch,
            RIGHT_BATCH_COLUMN: self.right_batch,
            INDICES_COLUMN: [
                {BEGIN_INDEX_COLUMN: begin, END_INDEX_COLUMN: end}
                for begin, end in self.indices
            ],
        }


class ArrayWindowBatchSummarizer(
    WindowBatchSummarizer[K, L, R, ArrayWindowBatch[L, R]]
):
    """Render window batches as plain lists.

    Meant for tests and debugging; use
    {py:obj}`ArrowWindowBatchSummarizer` to hand batches to another
    process.

    """

    @property
    @override
    def schema(self) -> pa.Schema:
        return pa.schema(
            [
                pa.field(LEFT_BATCH_COLUMN, pa.list_(pa.struct(self.left_schema))),
                pa.field(RIGHT_BATCH_COLUMN, pa.list_(pa.struct(self.right_schema))),
                pa.field(
                    INDICES_COLUMN,
                    pa.list_(
                        pa.struct(
                            [
                                pa.field(BEGIN_INDEX_COLUMN, pa.int32()),
                                pa.field(END_INDEX_COLUMN, pa.int32()),
                            ]
                        )
                    ),
                ),
            ]
        )

    @override
    def render_output(self, state: WindowState[K, L, R]) -> ArrayWindowBatch[L, R]:
        assert state.right_rows is not None
        return ArrayWindowBatch(
            list(state.left_rows),
            list(state.right_rows),
            list(zip(state.begin_indices, state.end_indices)),
        )


@dataclass(frozen=True)
class ArrowWindowBatch(Generic[L]):
    """Window batch contents with Arrow encoded row and index batches.

    Each `bytes` field is an independent Arrow IPC file.

    """

    base_rows: List[L]
    """Original left rows, unencoded, so results can be joined back
    onto them."""

    left_batch: Optional[bytes]
    """Left rows projected to the left pruned schema. `None` if that
    schema has no fields."""

    left_length: int
    """Number of encoded left rows; 0 if `left_batch` is `None`."""

    right_batch: bytes
    """Concatenated right rows projected to the right pruned schema."""

    right_length: int
    """Number of concatenated right rows."""

    indices: bytes
    """`begin` and `end` offsets into the right rows, one pair per
    left row."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            BASE_ROWS_COLUMN: self.base_rows,
            LEFT_BATCH_COLUMN: self.left_batch,
            LEFT_LENGTH_COLUMN: self.left_length,
            RIGHT_BATCH_COLUMN: self.right_batch,
            RIGHT_LENGTH_COLUMN: self.right_length,
            INDICES_COLUMN: self.indices,
        }


class ArrowWindowBatchSummarizer(WindowBatchSummarizer[K, L, R, ArrowWindowBatch[L]]):
    """Render window batches as Arrow record batches.

    Only the columns in the pruned schemas are encoded. If the left
    pruned schema is empty, no left batch is encoded at all; the
    original left rows are always passed through as `base_rows`. The
    right pruned schema must name at least one column, since an Arrow
    batch with no columns can't carry a row count.

    """

    def __init__(
        self,
        left_schema: pa.Schema,
        left_pruned_schema: pa.Schema,
        right_schema: pa.Schema,
        right_pruned_schema: pa.Schema,
        config: Optional[EncoderConfig] = None,
    ):
        super().__init__(left_schema, right_schema)
        validate_pruned_schema(left_schema, left_pruned_schema)
        validate_pruned_schema(right_schema, right_pruned_schema)
        if len(right_pruned_schema) == 0:
            msg = "right pruned schema must have at least one field"
            raise ValueError(msg)
        self.left_pruned_schema = left_pruned_schema
        self.right_pruned_schema = right_pruned_schema
        self.config = config if config is not None else EncoderConfig()

    @property
    @override
    def schema(self) -> pa.Schema:
        return pa.schema(
            [
                pa.field(BASE_ROWS_COLUMN, pa.list_(pa.struct(self.left_schema))),
                pa.field(LEFT_BATCH_COLUMN, pa.binary()),
                pa.field(LEFT_LENGTH_COLUMN, pa.int32()),
                pa.field(RIGHT_BATCH_COLUMN, pa.binary()),
                pa.field(RIGHT_LENGTH_COLUMN, pa.int32()),
                pa.field(INDICES_COLUMN, pa.binary()),
            ]
        )

    @override
    def render_output(self, state: WindowState[K, L, R]) -> ArrowWindowBatch[L]:
        assert state.right_rows is not None
        if len(self.left_pruned_schema) > 0:
            left_length = len(state.left_rows)
            left_batch: Optional[bytes] = serialize_rows(
                state.left_rows,
                self.left_schema,
                self.left_pruned_schema,
                self.config,
            )
        else:
            left_length = 0
            left_batch = None

        right_batch = serialize_rows(
            state.right_rows,
            self.right_schema,
            self.right_pruned_schema,
            self.config,
        )
        indices = serialize_indices(
            state.begin_indices, state.end_indices, self.config
        )

        return ArrowWindowBatch(
            list(state.left_rows),
            left_batch,
            left_length,
            right_batch,
            len(state.right_rows),
            indices,
        )
