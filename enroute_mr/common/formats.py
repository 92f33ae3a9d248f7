"""
Input and output formats

An input format turns a stream of raw text lines into records, one batch per
call. An output format turns aggregate records into delimited rows.
"""

import csv
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Iterator, List, Optional, Sequence, TextIO

logger = logging.getLogger(__name__)


class RecordReader(ABC):
    """Incremental reader over one stream of lines"""

    def __init__(self):
        self.lines_read = 0
        self.skipped = 0

    @abstractmethod
    def read(self, nrecs: int) -> List[Any]:
        """
        Read the next batch of records

        Args:
            nrecs: Maximum number of records to return

        Returns:
            Up to nrecs records; an empty list once the stream is exhausted
        """


class InputFormat(ABC):
    """Pluggable input format"""

    @abstractmethod
    def open(self, lines: Iterable[str]) -> RecordReader:
        """Wrap a stream of raw lines in a RecordReader"""


class OutputFormat(ABC):
    """Pluggable output format"""

    extension = ".txt"

    @abstractmethod
    def header(self) -> Optional[List[str]]:
        """Column names written before the first row, or None"""

    @abstractmethod
    def format(self, aggregate) -> List[str]:
        """Serialize one aggregate to a list of column strings"""

    def write(self, aggregates: Iterable[Any], stream: TextIO) -> int:
        """
        Write every aggregate to an open text stream

        Returns:
            Number of rows written (header excluded)
        """
        writer = csv.writer(stream, lineterminator="\n")
        header = self.header()
        if header:
            writer.writerow(header)
        count = 0
        for aggregate in aggregates:
            writer.writerow(self.format(aggregate))
            count += 1
        return count


class DelimitedRecordReader(RecordReader):
    """Binds each delimited line positionally to a fixed field schema"""

    def __init__(self, lines: Iterable[str], fields: Sequence[str], record_type, delimiter: str):
        super().__init__()
        self._lines: Iterator[str] = iter(lines)
        self._num_fields = len(fields)
        self._record_type = record_type
        self._delimiter = delimiter

    def read(self, nrecs: int) -> List[Any]:
        records = []
        while len(records) < nrecs:
            line = next(self._lines, None)
            if line is None:
                break
            self.lines_read += 1

            record = self._parse(line)
            if record is None:
                self.skipped += 1
                logger.debug(f"Skipping malformed line {self.lines_read}: {line[:80]!r}")
                continue
            records.append(record)
        return records

    def _parse(self, line: str):
        line = line.rstrip("\r\n")
        if not line.strip():
            return None

        values = line.split(self._delimiter)
        if len(values) != self._num_fields:
            return None
        return self._record_type._make(v.strip() for v in values)


class DelimitedTextInputFormat(InputFormat):
    """Delimited text lines bound to a named tuple type"""

    def __init__(self, fields: Sequence[str], record_type, delimiter: str = ","):
        """
        Args:
            fields: Column names in file order, one per record_type field
            record_type: NamedTuple class built with _make()
            delimiter: Field separator
        """
        if len(fields) != len(record_type._fields):
            raise ValueError(
                f"Schema has {len(fields)} columns but {record_type.__name__} "
                f"has {len(record_type._fields)} fields"
            )
        self.fields = tuple(fields)
        self.record_type = record_type
        self.delimiter = delimiter

    def open(self, lines: Iterable[str]) -> DelimitedRecordReader:
        return DelimitedRecordReader(lines, self.fields, self.record_type, self.delimiter)


class CsvOutputFormat(OutputFormat):
    """Comma separated rows with a header and an explicit missing-value marker"""

    extension = ".csv"

    def __init__(self, columns: Sequence[str], na_rep: str = "NA"):
        self.columns = list(columns)
        self.na_rep = na_rep

    def header(self) -> List[str]:
        return list(self.columns)

    def format(self, aggregate) -> List[str]:
        return [self._format_value(value) for value in aggregate]

    def _format_value(self, value) -> str:
        if value is None:
            return self.na_rep
        if isinstance(value, float):
            # repr is the shortest string that round-trips the float
            return repr(value)
        return str(value)
