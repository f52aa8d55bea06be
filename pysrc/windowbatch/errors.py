"""Utilities for error handling."""


class ProtocolError(RuntimeError):
    """A summarizer was driven out of its calling protocol.

    This is raised when a driver violates the ordering contract of a
    summarizer, e.g. subtracting from an empty aggregate or rendering
    a window batch twice. It indicates a bug in the driver, so the
    current batch should be abandoned rather than retried.

    """

    pass
