"""
staging.py

Staging Ingestor: pulls raw rows from an external source, checks them
against a declared schema and turns them into StagedRecords.

Ingestion is all-or-nothing per batch. A storage failure restarts the batch
from the first row (bounded retries with exponential backoff); cancellation
or timeout throws away whatever was read so far.
"""

import datetime
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from warehouse import config as settings
from warehouse.config import ConfigError, DimensionConfig, FactConfig, FIELD_TYPES
from warehouse.errors import (
    BatchReport,
    IngestionCancelled,
    MalformedRecord,
    StorageUnavailable,
)

_TRUE = {"1", "true", "t", "yes", "y"}
_FALSE = {"0", "false", "f", "no", "n"}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"{value!r} is not a boolean")


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("booleans are not integers")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{value!r} is not a whole number")
    return int(str(value).strip()) if isinstance(value, str) else int(value)


def _parse_float(value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{value!r} is not a finite number")
    return number


_DECIMAL_QUANTUM = Decimal(1).scaleb(-settings.DECIMAL_SCALE)
_DECIMAL_LIMIT = Decimal(10) ** (settings.DECIMAL_PRECISION - settings.DECIMAL_SCALE)


def _parse_decimal(value: Any) -> Decimal:
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"{value!r} is not a decimal") from None
    if not number.is_finite():
        raise ValueError(f"{value!r} is not a finite number")
    if abs(number) >= _DECIMAL_LIMIT:
        raise ValueError(f"{value!r} does not fit NUMERIC({settings.DECIMAL_PRECISION}, {settings.DECIMAL_SCALE})")
    # Same scale as the warehouse column, so a stored value compares equal on reload.
    return number.quantize(_DECIMAL_QUANTUM, rounding=ROUND_HALF_UP)


def _parse_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value).strip())


def _parse_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(str(value).strip())


PARSERS: Dict[str, Callable[[Any], Any]] = {
    "str": lambda v: v if isinstance(v, str) else str(v),
    "int": _parse_int,
    "float": _parse_float,
    "decimal": _parse_decimal,
    "bool": _parse_bool,
    "date": _parse_date,
    "datetime": _parse_datetime,
}


class _MissingCell:
    """Fill value for cells a delimited row is too short to carry."""

    def __repr__(self):
        return "<missing cell>"


MISSING_CELL = _MissingCell()


def _is_blank(value: Any) -> bool:
    # pandas hands missing cells over as NaN
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    return isinstance(value, str) and value.strip() == ""


# ───────────── Schema ──────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type_name: str = "str"
    required: bool = False

    def __post_init__(self):
        if self.type_name not in FIELD_TYPES:
            raise ConfigError(f"column '{self.name}' has unknown type '{self.type_name}'")


class StagingSchema:
    def __init__(self, columns: Sequence[ColumnSpec], business_key_field: Optional[str] = None):
        self.columns = tuple(columns)
        self.business_key_field = business_key_field
        self._by_name = {c.name: c for c in self.columns}
        if len(self._by_name) != len(self.columns):
            raise ConfigError("staging schema declares a column twice")
        if business_key_field is not None and business_key_field not in self._by_name:
            raise ConfigError(f"business key '{business_key_field}' is not a declared column")

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @classmethod
    def from_dict(cls, data: Mapping) -> "StagingSchema":
        required = set(data.get("required", ()))
        bk = data.get("business_key_field")
        if bk:
            required.add(bk)
        columns = [
            ColumnSpec(name, type_name, name in required)
            for name, type_name in data["columns"].items()
        ]
        return cls(columns, bk)

    @classmethod
    def for_dimension(cls, dim: DimensionConfig) -> "StagingSchema":
        columns = [ColumnSpec(dim.business_key_field, dim.type_of(dim.business_key_field), True)]
        columns += [ColumnSpec(name, dim.type_of(name)) for name in dim.attribute_fields]
        return cls(columns, dim.business_key_field)

    @classmethod
    def for_fact(cls, fact: FactConfig) -> "StagingSchema":
        # Foreign business keys stay optional here; the Key Resolver decides
        # what an empty reference means under the dimension's policy.
        columns = []
        for ref in fact.dimension_references:
            if ref.fk_field not in {c.name for c in columns}:
                columns.append(ColumnSpec(ref.fk_field, fact.type_of(ref.fk_field)))
        columns += [ColumnSpec(name, fact.type_of(name), True) for name in fact.measure_fields]
        return cls(columns)

    def coerce(self, raw: Any, row_number: Optional[int] = None) -> Dict[str, Any]:
        """
        Check arity / columns of one raw row and convert its values to declared
        types. Optional columns a mapping row does not carry stay absent from
        the result, so later stages can tell "not sent" from "sent empty".
        """
        if isinstance(raw, Mapping):
            unknown = [k for k in raw if k not in self._by_name]
            if unknown:
                raise MalformedRecord(
                    f"undeclared columns {sorted(map(str, unknown))}", row_number=row_number, record=raw
                )
            short = [k for k, v in raw.items() if v is MISSING_CELL]
            if short:
                raise MalformedRecord(
                    f"row is short, no values for columns {short}", row_number=row_number, record=raw
                )
            values = {c.name: raw[c.name] for c in self.columns if c.name in raw}
        elif isinstance(raw, (list, tuple)):
            if len(raw) != len(self.columns):
                raise MalformedRecord(
                    f"expected {len(self.columns)} values, got {len(raw)}",
                    row_number=row_number, record=raw,
                )
            values = dict(zip(self.column_names, raw))
        else:
            raise MalformedRecord(
                f"unsupported row type {type(raw).__name__}", row_number=row_number, record=raw
            )

        out = {}
        for column in self.columns:
            sent = column.name in values
            value = values.get(column.name)
            if _is_blank(value):
                if column.required:
                    raise MalformedRecord(
                        f"required field '{column.name}' is missing", row_number=row_number, record=raw
                    )
                if sent:
                    out[column.name] = None
                continue
            try:
                out[column.name] = PARSERS[column.type_name](value)
            except (TypeError, ValueError) as exc:
                raise MalformedRecord(
                    f"field '{column.name}' is not a valid {column.type_name}: {exc}",
                    row_number=row_number, record=raw,
                ) from None
        return out


# ───────────── Records & batches ───────────────────────────────────────────────
@dataclass
class StagedRecord:
    values: Dict[str, Any]
    business_key_field: Optional[str] = None
    row_number: Optional[int] = None

    @property
    def business_key(self) -> Any:
        if self.business_key_field is None:
            return None
        return self.values.get(self.business_key_field)

    def get(self, column: str, default: Any = None) -> Any:
        return self.values.get(column, default)

    def __getitem__(self, column: str) -> Any:
        return self.values[column]

    def __contains__(self, column: str) -> bool:
        return column in self.values


@dataclass
class StagingBatch:
    name: str
    records: List[StagedRecord] = field(default_factory=list)
    report: Optional[BatchReport] = None

    def __len__(self):
        return len(self.records)

    def __iter__(self):
        return iter(self.records)


class CancelToken:
    """Cooperative cancellation flag shared between an ingestion and its caller."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ───────────── Ingestor ────────────────────────────────────────────────────────
class StagingIngestor:
    def __init__(
        self,
        schema: StagingSchema,
        *,
        retries: int = settings.INGEST_RETRIES,
        backoff_seconds: float = settings.INGEST_BACKOFF_SECONDS,
        max_backoff_seconds: float = settings.INGEST_MAX_BACKOFF_SECONDS,
        timeout_seconds: Optional[float] = settings.INGEST_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.schema = schema
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._clock = clock

    def backoff(self, attempt: int) -> float:
        return min(self.backoff_seconds * (2 ** attempt), self.max_backoff_seconds)

    def ingest(self, source, name: str = "batch", cancel_token: Optional[CancelToken] = None) -> StagingBatch:
        """
        Read one batch from `source` (any object with a `rows()` method that
        returns an iterable of mappings or sequences).
        Raises StorageUnavailable once retries are exhausted and
        IngestionCancelled on cancellation / timeout.
        """
        deadline = None if self.timeout_seconds is None else self._clock() + self.timeout_seconds
        attempt = 0
        while True:
            try:
                return self._read_bounded(source, name, cancel_token, deadline)
            except StorageUnavailable as exc:
                if attempt >= self.retries:
                    raise StorageUnavailable(
                        f"ingestion of '{name}' failed after {attempt + 1} attempts: {exc}"
                    ) from exc
                delay = self.backoff(attempt)
                print(f"   • '{name}' source unavailable ({exc}); retrying in {delay:.1f}s")
                self._check_interrupted(name, cancel_token, deadline)
                self._sleep(delay)
                attempt += 1

    def _check_interrupted(self, name, cancel_token, deadline) -> None:
        if cancel_token is not None and cancel_token.cancelled:
            raise IngestionCancelled(f"ingestion of '{name}' was cancelled; batch discarded")
        if deadline is not None and self._clock() > deadline:
            raise IngestionCancelled(
                f"ingestion of '{name}' exceeded {self.timeout_seconds}s; batch discarded"
            )

    def _read_bounded(self, source, name, cancel_token, deadline) -> StagingBatch:
        """
        With a deadline the read runs on a worker thread, so a source that
        blocks inside `next()` still times out. The worker stops by itself at
        its next row check once the deadline has passed.
        """
        if deadline is None:
            return self._read_once(source, name, cancel_token, deadline)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"ingest-{name}")
        future = pool.submit(self._read_once, source, name, cancel_token, deadline)
        try:
            return future.result(timeout=max(0.0, deadline - self._clock()))
        except FutureTimeout:
            raise IngestionCancelled(
                f"ingestion of '{name}' exceeded {self.timeout_seconds}s; batch discarded"
            ) from None
        finally:
            pool.shutdown(wait=False)

    def _read_once(self, source, name, cancel_token, deadline) -> StagingBatch:
        report = BatchReport(f"ingest:{name}")
        records: List[StagedRecord] = []
        rows: Iterable = source.rows()
        for row_number, raw in enumerate(rows, start=1):
            self._check_interrupted(name, cancel_token, deadline)
            try:
                values = self.schema.coerce(raw, row_number)
            except MalformedRecord as err:
                report.reject(err)
                continue
            records.append(StagedRecord(values, self.schema.business_key_field, row_number))
            report.accept()
        self._check_interrupted(name, cancel_token, deadline)
        return StagingBatch(name, records, report)
