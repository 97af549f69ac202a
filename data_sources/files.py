"""
Row sources for the Staging Ingestor.

Each source has a `rows()` method returning a fresh lazy iterable, so the
ingestor can restart a batch from the first row after a storage failure.
"""

import csv
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

import pandas as pd

from warehouse.errors import StorageUnavailable
from warehouse.staging import MISSING_CELL


class CsvSource:
    def __init__(self, path: str, delimiter: str = ",", encoding: str = "utf-8"):
        self.path = path
        self.delimiter = delimiter
        self.encoding = encoding

    def rows(self) -> Iterator[Mapping[str, Any]]:
        try:
            with open(self.path, newline="", encoding=self.encoding) as fh:
                # short rows are filled with MISSING_CELL and rejected by the staging schema
                for row in csv.DictReader(fh, delimiter=self.delimiter, restval=MISSING_CELL):
                    yield row
        except OSError as exc:
            raise StorageUnavailable(f"cannot read {self.path}: {exc}") from exc

    def __repr__(self):
        return f"CsvSource({self.path!r})"


class DataFrameSource:
    """
    Rows from a pandas DataFrame, or from a CSV read in chunks of `chunksize`
    rows when given a path.
    """

    def __init__(self, frame: Union[pd.DataFrame, str], chunksize: Optional[int] = None):
        self.frame = frame
        self.chunksize = chunksize

    def _chunks(self) -> Iterable[pd.DataFrame]:
        if isinstance(self.frame, pd.DataFrame):
            return [self.frame]
        # dtype=str leaves type coercion to the staging schema
        return pd.read_csv(self.frame, dtype=str, keep_default_na=False, chunksize=self.chunksize or 10_000)

    def rows(self) -> Iterator[Mapping[str, Any]]:
        try:
            for chunk in self._chunks():
                for record in chunk.to_dict(orient="records"):
                    yield record
        except OSError as exc:
            raise StorageUnavailable(f"cannot read {self.frame}: {exc}") from exc


class IterableSource:
    """Wraps an in-memory iterable, or a zero-argument callable producing one."""

    def __init__(self, rows):
        self._rows = rows

    def rows(self) -> Iterable[Any]:
        return self._rows() if callable(self._rows) else iter(self._rows)
