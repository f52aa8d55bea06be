"""Encoder settings, built in code or read from the environment."""

import os
from dataclasses import dataclass
from typing import Dict, Optional

import pyarrow as pa  # type: ignore

COMPRESSIONS = ["lz4", "zstd"]
"""Buffer compression codecs the IPC writer accepts."""


@dataclass(frozen=True)
class EncoderConfig:
    """Settings for writing columnar record batches.

    The defaults produce uncompressed Arrow IPC files readable by any
    Arrow implementation.

    """

    compression: Optional[str] = None
    """Buffer compression codec, one of {py:obj}`COMPRESSIONS`, or
    `None` to write uncompressed buffers."""

    def __post_init__(self) -> None:
        if self.compression is not None and self.compression not in COMPRESSIONS:
            msg = (
                f"unknown IPC compression {self.compression!r}; "
                f"must be one of {COMPRESSIONS!r} or `None`"
            )
            raise ValueError(msg)

    def write_options(self) -> pa.ipc.IpcWriteOptions:
        """Build the matching `pyarrow` IPC writer options."""
        return pa.ipc.IpcWriteOptions(compression=self.compression)


def encoder_env(env: Dict[str, str] = os.environ) -> EncoderConfig:
    """Read an {py:obj}`EncoderConfig` from environment variables.

    The recognized environment variables are:

    * `WINDOWBATCH_IPC_COMPRESSION` - Buffer compression codec. Unset
      or empty means uncompressed.

    >>> encoder_env({"WINDOWBATCH_IPC_COMPRESSION": "zstd"})
    EncoderConfig(compression='zstd')

    :arg env: Environment variables. Defaults to `os.environ`.

    :returns: The encoder configuration.

    """
    compression = env.get("WINDOWBATCH_IPC_COMPRESSION", "").strip().lower()
    return EncoderConfig(compression=compression or None)
