"""
fact_loader.py

Fact Loader: swaps the business keys of incoming fact records for the
surrogate keys of the current dimension members and keeps the measures as
they are. A record that fails resolution or validation is rejected on its
own; the rest of the batch still loads.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from numbers import Real
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from warehouse.config import ConfigError, FactConfig
from warehouse.errors import BatchReport, MalformedRecord, RowError
from warehouse.resolver import KeyResolver
from warehouse.staging import StagedRecord


@dataclass(frozen=True)
class FactRow:
    fact_name: str
    values: Mapping[str, Any]
    batch_id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, column: str) -> Any:
        return self.values[column]

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.values)


@dataclass
class FactLoadResult:
    fact_name: str
    rows: Tuple[FactRow, ...] = ()
    report: BatchReport = field(default=None)

    @property
    def loaded(self) -> int:
        return len(self.rows)

    @property
    def rejected(self) -> int:
        return self.report.rejected_count if self.report else 0


def _is_numeric(value: Any) -> bool:
    if not isinstance(value, (Real, Decimal)) or isinstance(value, bool):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    return isinstance(value, int) or math.isfinite(value)


class FactLoader:
    def __init__(self, config: FactConfig, resolvers: Mapping[str, KeyResolver]):
        missing = [ref.dimension for ref in config.dimension_references if ref.dimension not in resolvers]
        if missing:
            raise ConfigError(f"fact '{config.fact_name}' has no resolver for dimensions {missing}")
        self.config = config
        self.resolvers = resolvers

    def _resolve_record(self, record: Any, row_number: Optional[int]) -> Tuple[Dict[str, Any], List[str]]:
        values: Dict[str, Any] = {}
        for measure in self.config.measure_fields:
            value = record.get(measure)
            if not _is_numeric(value):
                raise MalformedRecord(
                    f"measure '{measure}' must be numeric, got {value!r}", row_number=row_number
                )
            values[measure] = value

        placeholders = []
        keys: Dict[str, Any] = {}
        for ref in self.config.dimension_references:
            resolver = self.resolvers[ref.dimension]
            business_key = record.get(ref.fk_field)
            keys[ref.key_column] = resolver.resolve(business_key, row_number=row_number)
            if resolver.lookup(business_key) is None:
                placeholders.append(ref.dimension)
        return {**keys, **values}, placeholders

    def load(self, records: Iterable[Any], batch_id: Optional[int] = None) -> FactLoadResult:
        report = BatchReport(f"facts:{self.config.fact_name}")
        rows: List[FactRow] = []

        for position, record in enumerate(records, start=1):
            row_number = record.row_number if isinstance(record, StagedRecord) else position
            try:
                values, placeholders = self._resolve_record(record, row_number)
            except RowError as err:
                report.reject(err)
                continue
            for dimension in placeholders:
                report.tally(f"PLACEHOLDER:{dimension}")
            rows.append(FactRow(self.config.fact_name, values, batch_id))
            report.accept()

        return FactLoadResult(self.config.fact_name, tuple(rows), report)
