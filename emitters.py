import csv
from abc import ABC, abstractmethod
from typing import IO, Iterable

from models import AccountSnapshot

SNAPSHOT_FIELDS = ("client", "available", "held", "total", "locked")


class SnapshotEmitter(ABC):
    def __init__(self, stream: IO[str]):
        self.stream = stream

    @abstractmethod
    def emit(self, accounts: Iterable[AccountSnapshot]) -> None:
        """Write every account snapshot to the stream."""
        pass


class CsvSnapshotEmitter(SnapshotEmitter):
    def __init__(self, stream: IO[str], delimiter: str = ","):
        super().__init__(stream)
        self.delimiter = delimiter

    def emit(self, accounts: Iterable[AccountSnapshot]) -> None:
        writer = csv.writer(self.stream, delimiter=self.delimiter, lineterminator="\n")
        writer.writerow(SNAPSHOT_FIELDS)
        for account in accounts:
            writer.writerow([
                account.client,
                format(account.available, "f"),
                format(account.held, "f"),
                format(account.total, "f"),
                "true" if account.locked else "false",
            ])


class JsonLinesSnapshotEmitter(SnapshotEmitter):
    def emit(self, accounts: Iterable[AccountSnapshot]) -> None:
        for account in accounts:
            self.stream.write(account.model_dump_json())
            self.stream.write("\n")


def get_emitter(output_format: str, stream: IO[str], delimiter: str = ",") -> SnapshotEmitter:
    """Get the emitter registered for an output format."""
    output_format = output_format.lower()
    if output_format == "csv":
        return CsvSnapshotEmitter(stream, delimiter=delimiter)
    if output_format == "jsonl":
        return JsonLinesSnapshotEmitter(stream)
    raise ValueError(f"Unsupported output format: {output_format}")
