"""JSONL record exporter with buffered async writes."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self

import aiofiles

from record_keeper.models import Record
from record_keeper.utils import dumps_safe


def _default_buffer_size() -> int:
    return int(os.getenv("JSONL_EXPORT_BUFFER_SIZE", "100"))


@dataclass
class JsonlExporterConfig:
    """Configuration for JsonlExporter.

    Attributes:
        file_path: Path to the JSONL output file.
        key_column: Name the record key is written under.
        buffer_size: Number of lines to buffer before auto-flush.
    """

    file_path: Path
    key_column: str = "key"
    buffer_size: int = field(default_factory=_default_buffer_size)


class JsonlExporter:
    """Writes records to a JSON-lines file.

    Lines are buffered in memory and written when the buffer reaches
    `buffer_size` or when explicitly flushed. Values are serialized with the
    circular-safe encoder, so datetimes become ISO strings and repeated
    containers are dropped instead of raising.

    Example:
        ```python
        async with JsonlExporter(JsonlExporterConfig(Path("bond_log.jsonl"))) as exporter:
            await exporter.write_batch(await store.find_all())
        ```
    """

    def __init__(self, config: JsonlExporterConfig) -> None:
        self._config = config
        self._buffer: list[str] = []
        self._file: Any = None
        self._closed = False
        self._written = 0

    async def __aenter__(self) -> Self:
        await self._open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def written(self) -> int:
        """Number of records accepted so far."""
        return self._written

    async def _open(self) -> None:
        """Create or truncate the export file."""
        self._file = await aiofiles.open(
            self._config.file_path, "w", encoding="utf-8", newline="\n"
        )

    async def write(self, record: Record | dict[str, Any]) -> None:
        """Buffer one record, flushing when the buffer is full.

        Args:
            record: A Record (flattened with its key) or a plain dict.
        """
        if self._closed:
            raise RuntimeError("Cannot write to closed exporter")

        if self._file is None:
            await self._open()

        if isinstance(record, Record):
            record = record.to_dict(self._config.key_column)

        self._buffer.append(dumps_safe(record))
        self._written += 1

        if len(self._buffer) >= self._config.buffer_size:
            await self.flush()

    async def write_batch(self, records: list[Record] | list[dict[str, Any]]) -> int:
        """Buffer several records. Returns the number accepted."""
        if self._closed:
            raise RuntimeError("Cannot write to closed exporter")

        for record in records:
            await self.write(record)

        return len(records)

    async def flush(self) -> None:
        """Write buffered lines as one chunk and fsync the file."""
        if self._file is None or not self._buffer:
            return

        chunk = "".join(f"{line}\n" for line in self._buffer)
        await self._file.write(chunk)
        self._buffer.clear()
        await self._file.flush()
        os.fsync(self._file.fileno())

    async def close(self) -> None:
        """Flush remaining lines and close the file. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        try:
            await self.flush()
        finally:
            if self._file is not None:
                await self._file.close()
                self._file = None
