import csv
from abc import ABC, abstractmethod
from os import PathLike
from typing import Iterable, Iterator, Mapping, Union

import structlog

from errors import RecordSourceError
from models import RawRecord

logger = structlog.get_logger()

RECORD_FIELDS = ("type", "client", "tx", "amount")


class RecordSource(ABC):
    """Lazy, single-pass producer of raw records.

    Sources follow the iterator protocol: each ``next()`` pulls one record
    and ``StopIteration`` marks the end. They cannot be rewound.
    """

    def __iter__(self) -> Iterator[RawRecord]:
        return self

    @abstractmethod
    def __next__(self) -> RawRecord:
        pass

    def close(self) -> None:
        """Release the underlying resource."""
        pass

    def __enter__(self) -> "RecordSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class CsvRecordSource(RecordSource):
    """Streams ``type, client, tx, amount`` rows from a CSV file with a header.

    The file is opened eagerly so a missing or unreadable file fails before
    any record is processed.
    """

    def __init__(self, path: Union[str, PathLike], delimiter: str = ","):
        self.path = str(path)
        try:
            self._handle = open(self.path, newline="", encoding="utf-8-sig")
        except OSError as e:
            raise RecordSourceError(
                f"Cannot open {self.path}: {e.strerror or e}", path=self.path
            ) from e

        self._reader = csv.DictReader(self._handle, delimiter=delimiter, skipinitialspace=True)
        self._exhausted = False
        logger.debug("Record source opened", path=self.path)

    def __next__(self) -> RawRecord:
        if self._exhausted:
            raise StopIteration

        while True:
            try:
                row = next(self._reader)
            except StopIteration:
                self.close()
                raise
            except (csv.Error, UnicodeDecodeError) as e:
                self.close()
                raise RecordSourceError(
                    f"Cannot read {self.path}: {e}",
                    path=self.path,
                    line=self._reader.line_num,
                ) from e

            fields = {
                key.strip().lower(): value
                for key, value in row.items()
                if key is not None
            }
            if not any(value and value.strip() for value in fields.values()):
                continue

            return RawRecord(
                line=self._reader.line_num,
                **{name: fields.get(name) for name in RECORD_FIELDS},
            )

    def close(self) -> None:
        self._exhausted = True
        if not self._handle.closed:
            self._handle.close()


class IterableRecordSource(RecordSource):
    """Wraps records already in memory (HTTP batches, tests)."""

    def __init__(self, items: Iterable[Union[RawRecord, Mapping]]):
        self._items = iter(items)
        self._position = 0

    def __next__(self) -> RawRecord:
        item = next(self._items)
        self._position += 1

        if isinstance(item, RawRecord):
            if item.line is None:
                return item.model_copy(update={"line": self._position})
            return item

        return RawRecord(
            line=self._position,
            **{name: item.get(name) for name in RECORD_FIELDS},
        )
