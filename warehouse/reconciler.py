"""
reconciler.py

Dimension Reconciler: compares a staged batch with the current state of a
dimension and produces the next dimension snapshot.

  NEW            – business key not in the dimension → new row, next surrogate key
  TYPE1_CHANGED  – only Type 1 fields differ → current row overwritten, same key
  TYPE2_CHANGED  – a Type 2 field differs → new version row, new key; the old row
                   stays as history. Type 1 changes in the same record ride along
                   on the new version.
  UNCHANGED      – nothing to do

Classification runs per business-key partition and only reads the immutable
snapshot, so partitions can be classified in parallel. Surrogate keys are
handed out serially, in arrival order, from the reconciler's own counter.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

from warehouse.config import DimensionConfig
from warehouse.dimension import Dimension, DimensionRow, SurrogateKeyCounter
from warehouse.errors import BatchReport, KeyCollision, MalformedRecord
from warehouse.staging import StagedRecord


class ChangeKind(str, Enum):
    NEW = "NEW"
    TYPE1_CHANGED = "TYPE1_CHANGED"
    TYPE2_CHANGED = "TYPE2_CHANGED"
    UNCHANGED = "UNCHANGED"


@dataclass
class PlannedChange:
    kind: ChangeKind
    sequence: int
    business_key: Hashable
    attributes: Dict[str, Any]
    records: List[StagedRecord] = field(default_factory=list)
    # surrogate key of the row overwritten by a Type 1 change; None for new rows
    target_key: Optional[int] = None


@dataclass
class ReconciliationPlan:
    dimension_name: str
    base: Dimension
    new_rows: List[PlannedChange] = field(default_factory=list)
    type2_versions: List[PlannedChange] = field(default_factory=list)
    type1_updates: List[PlannedChange] = field(default_factory=list)
    report: Optional[BatchReport] = None

    def ordered(self) -> List[PlannedChange]:
        changes = self.new_rows + self.type2_versions + self.type1_updates
        return sorted(changes, key=lambda c: c.sequence)

    @property
    def is_empty(self) -> bool:
        return not (self.new_rows or self.type2_versions or self.type1_updates)


@dataclass
class ReconciliationResult:
    base: Dimension
    dimension: Dimension
    plan: ReconciliationPlan
    inserted: Tuple[DimensionRow, ...] = ()
    updated: Tuple[DimensionRow, ...] = ()

    @property
    def name(self) -> str:
        return self.dimension.name

    @property
    def report(self) -> BatchReport:
        return self.plan.report


class DimensionReconciler:
    def __init__(
        self,
        config: DimensionConfig,
        counter: Optional[SurrogateKeyCounter] = None,
        max_workers: int = 1,
    ):
        self.config = config
        self.counter = counter
        self.max_workers = max_workers
        # one reconciliation at a time per dimension
        self._lock = threading.Lock()

    # ───────────── Classification ───────────────────────────────────────────────
    def _attributes_of(self, record: StagedRecord) -> Dict[str, Any]:
        return {f: record.get(f) for f in self.config.attribute_fields if f in record}

    @staticmethod
    def _differing(fields, incoming, working) -> List[str]:
        return [f for f in fields if f in incoming and incoming[f] != working.get(f)]

    def _classify_partition(
        self, business_key, records: List[Tuple[int, StagedRecord]], current: Optional[DimensionRow]
    ) -> Tuple[List[PlannedChange], List[ChangeKind]]:
        changes: List[PlannedChange] = []
        kinds: List[ChangeKind] = []
        working = dict(current.attributes) if current is not None else None

        for sequence, record in records:
            incoming = self._attributes_of(record)

            if working is None:
                working = {f: incoming.get(f) for f in self.config.attribute_fields}
                changes.append(PlannedChange(ChangeKind.NEW, sequence, business_key, dict(working), [record]))
                kinds.append(ChangeKind.NEW)
                continue

            type2 = self._differing(self.config.type2_fields, incoming, working)
            type1 = self._differing(self.config.type1_fields, incoming, working)

            if type2:
                working = {**working, **{f: incoming[f] for f in type1 + type2}}
                changes.append(
                    PlannedChange(ChangeKind.TYPE2_CHANGED, sequence, business_key, dict(working), [record])
                )
                kinds.append(ChangeKind.TYPE2_CHANGED)
            elif type1:
                working = {**working, **{f: incoming[f] for f in type1}}
                if changes:
                    # Fold into the latest version already planned for this key.
                    changes[-1].attributes = dict(working)
                    changes[-1].records.append(record)
                else:
                    changes.append(PlannedChange(
                        ChangeKind.TYPE1_CHANGED, sequence, business_key, dict(working), [record],
                        target_key=current.surrogate_key,
                    ))
                kinds.append(ChangeKind.TYPE1_CHANGED)
            else:
                kinds.append(ChangeKind.UNCHANGED)

        return changes, kinds

    def plan(self, dimension: Dimension, records: Iterable[StagedRecord]) -> ReconciliationPlan:
        report = BatchReport(f"reconcile:{self.config.dimension_name}")
        partitions: Dict[Hashable, List[Tuple[int, StagedRecord]]] = {}
        bk_field = self.config.business_key_field

        for sequence, record in enumerate(records):
            business_key = record.get(bk_field)
            if business_key is None or (isinstance(business_key, str) and not business_key.strip()):
                report.reject(MalformedRecord(
                    f"missing business key '{bk_field}'", row_number=record.row_number, record=record.values
                ))
                continue
            try:
                partitions.setdefault(business_key, []).append((sequence, record))
            except TypeError:
                report.reject(MalformedRecord(
                    f"business key {business_key!r} is not hashable",
                    row_number=record.row_number, record=record.values,
                ))

        def classify(item):
            business_key, partition = item
            return self._classify_partition(business_key, partition, dimension.current(business_key))

        items = list(partitions.items())
        if self.max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(classify, items))
        else:
            outcomes = [classify(item) for item in items]

        plan = ReconciliationPlan(self.config.dimension_name, dimension, report=report)
        for changes, kinds in outcomes:
            for kind in kinds:
                report.tally(kind.value)
                report.accept()
            for change in changes:
                if change.kind is ChangeKind.NEW:
                    plan.new_rows.append(change)
                elif change.kind is ChangeKind.TYPE2_CHANGED:
                    plan.type2_versions.append(change)
                else:
                    plan.type1_updates.append(change)
        return plan

    # ───────────── Application ──────────────────────────────────────────────────
    def apply(
        self, dimension: Dimension, plan: ReconciliationPlan, batch_id: Optional[int] = None
    ) -> ReconciliationResult:
        """Assign surrogate keys and build the next snapshot; `dimension` is left untouched."""
        if plan.base is not dimension:
            raise KeyCollision(
                f"dimension '{dimension.name}': plan was built against a different snapshot"
            )
        if self.counter is None:
            self.counter = SurrogateKeyCounter.after(dimension)
        else:
            # someone else may have published keys since this counter last ran
            self.counter.advance_to(dimension.max_surrogate_key + 1)

        rows: Dict[int, DimensionRow] = {row.surrogate_key: row for row in dimension}
        floor = dimension.max_surrogate_key
        inserted: List[DimensionRow] = []
        updated: List[DimensionRow] = []

        for change in plan.ordered():
            if change.target_key is None:
                key = self.counter.next()
                if key <= floor or key in rows:
                    raise KeyCollision(
                        f"dimension '{dimension.name}': surrogate key {key} collides with "
                        f"existing keys (max {floor})"
                    )
                floor = key
                row = DimensionRow(key, change.business_key, change.attributes, insert_batch=batch_id)
                rows[key] = row
                inserted.append(row)
            else:
                row = rows[change.target_key].with_attributes(change.attributes, batch_id)
                rows[change.target_key] = row
                updated.append(row)

        # dicts keep insertion order: existing rows ascending, then new keys ascending
        return ReconciliationResult(
            base=dimension,
            dimension=Dimension(dimension.name, rows.values()),
            plan=plan,
            inserted=tuple(inserted),
            updated=tuple(updated),
        )

    def reconcile(
        self, dimension: Dimension, records: Iterable[StagedRecord], batch_id: Optional[int] = None
    ) -> ReconciliationResult:
        with self._lock:
            plan = self.plan(dimension, records)
            return self.apply(dimension, plan, batch_id)
