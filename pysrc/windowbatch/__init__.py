"""Incremental windowed aggregation for ordered time series.

`windowbatch` has two halves.

**Window batches** ({py:obj}`windowbatch.window`) join each row of a
primary series against the slice of a companion series that falls
inside its window. A driver feeds row arrivals and window entries and
exits, and at the end of each batch the contents are flattened into a
single array of companion rows, with every primary row's window
expressed as a `(begin, end)` range into it. The batch can then be
encoded as Arrow record batches ({py:obj}`windowbatch.arrow`) and
handed to another compute stage.

**Subtractable summarizers** ({py:obj}`windowbatch.summarizers`) are
scalar aggregates that support adding values, removing previously
added values, and merging partial results. They make rolling
aggregates cheap: values are added as they enter a window and
subtracted as they leave it. {py:obj}`windowbatch.rolling` adapts them
to rolling window mapper callbacks.

Nothing in this package schedules work, performs disk I/O, or shares
state between instances. Run one summarizer instance per partition to
parallelize and combine the scalar aggregates with `merge`.

"""
