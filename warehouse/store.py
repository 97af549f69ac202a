"""
store.py

Storage collaborators for dimensions and facts.

A batch becomes visible in one step through `commit_batch`: InMemoryStore
swaps snapshot references and appends fact rows under a single lock,
SqlStore writes dimensions, facts and audit rows inside a single
`engine.begin()` transaction. Facts are append-only.
"""

import json
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from data_sources.model import build_metadata
from data_sources.rdbms import init_db
from warehouse.config import FIRST_SURROGATE_KEY, PipelineConfig
from warehouse.dimension import Dimension, DimensionRow
from warehouse.errors import BatchReport, KeyCollision, StorageUnavailable
from warehouse.fact_loader import FactRow
from warehouse.reconciler import ReconciliationResult


class WarehouseStore(ABC):
    @abstractmethod
    def load_dimension(self, name: str) -> Dimension:
        """Current published snapshot of a dimension (empty if never loaded)."""

    @abstractmethod
    def commit_batch(
        self,
        results: Sequence[ReconciliationResult] = (),
        fact_rows: Optional[Mapping[str, Sequence[FactRow]]] = None,
        batch_id: Optional[int] = None,
        reports: Sequence[BatchReport] = (),
    ) -> None:
        """
        Make every dimension result, fact row and report visible at once, or
        none of them. A result whose base is no longer the stored snapshot
        raises KeyCollision.
        """

    @abstractmethod
    def read_facts(self, fact_name: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def reset(self) -> None:
        pass

    def publish(self, results: Sequence[ReconciliationResult]) -> None:
        self.commit_batch(results)

    def append_facts(self, fact_name: str, rows: Sequence[FactRow]) -> int:
        self.commit_batch(fact_rows={fact_name: rows})
        return len(rows)

    def record_report(self, batch_id: int, report: BatchReport) -> None:
        self.commit_batch(batch_id=batch_id, reports=[report])

    # ───────────── Reads by key / scan ──────────────────────────────────────────
    def current_row(self, name: str, business_key) -> Optional[DimensionRow]:
        return self.load_dimension(name).current(business_key)

    def row(self, name: str, surrogate_key: int) -> Optional[DimensionRow]:
        return self.load_dimension(name).get(surrogate_key)

    def scan(self, name: str) -> List[DimensionRow]:
        return list(self.load_dimension(name))


# ───────────── In-memory ───────────────────────────────────────────────────────
class InMemoryStore(WarehouseStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._dimensions: Dict[str, Dimension] = {}
        self._facts: Dict[str, List[FactRow]] = {}
        self.reports: List[Dict[str, Any]] = []

    def load_dimension(self, name: str) -> Dimension:
        with self._lock:
            return self._dimensions.setdefault(name, Dimension(name))

    def commit_batch(self, results=(), fact_rows=None, batch_id=None, reports=()) -> None:
        with self._lock:
            for result in results:
                if self._dimensions.get(result.name, result.base) is not result.base:
                    raise KeyCollision(
                        f"dimension '{result.name}' was published by someone else since it was reconciled"
                    )
            for result in results:
                self._dimensions[result.name] = result.dimension
            for fact_name, rows in (fact_rows or {}).items():
                self._facts.setdefault(fact_name, []).extend(rows)
            self.reports.extend({"batch_id": batch_id, **report.to_dict()} for report in reports)

    def read_facts(self, fact_name: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {**row.as_dict(), "batch_id": row.batch_id} for row in self._facts.get(fact_name, [])
            ]

    def reset(self) -> None:
        with self._lock:
            self._dimensions.clear()
            self._facts.clear()
            self.reports.clear()


# ───────────── SQL (SQLAlchemy Core) ───────────────────────────────────────────
class SqlStore(WarehouseStore):
    def __init__(self, engine: Engine, config: PipelineConfig, schema: Optional[str] = None, create: bool = True):
        self.engine = engine
        self.config = config
        self.schema = schema
        bundle = init_db(engine, config, schema) if create else build_metadata(config, schema)
        self.metadata, self.dimension_tables, self.fact_tables, self.audit_table = bundle

    def _dimension_table(self, name: str):
        try:
            return self.dimension_tables[name]
        except KeyError:
            raise KeyError(f"dimension '{name}' is not configured") from None

    def _fact_table(self, name: str):
        try:
            return self.fact_tables[name]
        except KeyError:
            raise KeyError(f"fact '{name}' is not configured") from None

    def load_dimension(self, name: str) -> Dimension:
        table = self._dimension_table(name)
        attributes = self.config.dimensions[name].attribute_fields
        try:
            with self.engine.connect() as conn:
                result = conn.execute(select(table).order_by(table.c.surrogate_key)).mappings()
                rows = [
                    DimensionRow(
                        surrogate_key=r["surrogate_key"],
                        business_key=r["business_key"],
                        attributes={f: r[f] for f in attributes},
                        insert_batch=r["insert_id"],
                        update_batch=r["update_id"],
                    )
                    for r in result
                ]
        except DBAPIError as exc:
            raise StorageUnavailable(f"cannot read dimension '{name}': {exc}") from exc
        return Dimension(name, rows)

    def commit_batch(self, results=(), fact_rows=None, batch_id=None, reports=()) -> None:
        fact_rows = fact_rows or {}
        fact_tables = {name: self._fact_table(name) for name in fact_rows}
        try:
            with self.engine.begin() as conn:
                for result in results:
                    self._publish_one(conn, result)
                for name, rows in fact_rows.items():
                    if rows:
                        conn.execute(
                            fact_tables[name].insert(),
                            [{**row.as_dict(), "batch_id": row.batch_id} for row in rows],
                        )
                for report in reports:
                    conn.execute(self.audit_table.insert().values(
                        batch_id=batch_id,
                        stage=report.stage,
                        accepted=report.accepted,
                        rejected=report.rejected_count,
                        details=json.dumps(report.to_dict(), default=str),
                    ))
        except IntegrityError as exc:
            raise KeyCollision(f"integrity violation while committing batch {batch_id}: {exc.orig}") from exc
        except DBAPIError as exc:
            raise StorageUnavailable(f"commit of batch {batch_id} failed: {exc}") from exc

    def _publish_one(self, conn, result: ReconciliationResult) -> None:
        table = self._dimension_table(result.name)
        stored_max = conn.execute(select(func.max(table.c.surrogate_key))).scalar()
        if stored_max is None:
            stored_max = FIRST_SURROGATE_KEY - 1
        if stored_max != result.base.max_surrogate_key:
            # Raising inside begin() rolls the whole batch back.
            raise KeyCollision(
                f"dimension '{result.name}' changed since it was reconciled "
                f"(stored max key {stored_max}, expected {result.base.max_surrogate_key})"
            )

        for row in result.updated:
            conn.execute(
                table.update()
                .where(table.c.surrogate_key == row.surrogate_key)
                .values(**dict(row.attributes), update_id=row.update_batch)
            )
        if result.inserted:
            conn.execute(table.insert(), [
                {
                    "surrogate_key": row.surrogate_key,
                    "business_key": row.business_key,
                    **row.attributes,
                    "insert_id": row.insert_batch,
                    "update_id": None,
                }
                for row in result.inserted
            ])

    def read_facts(self, fact_name: str) -> List[Dict[str, Any]]:
        table = self._fact_table(fact_name)
        columns = [c for c in table.c if c.name not in ("fact_sk", "loaded_at")]
        try:
            with self.engine.connect() as conn:
                result = conn.execute(select(*columns).order_by(table.c.fact_sk)).mappings()
                return [dict(r) for r in result]
        except DBAPIError as exc:
            raise StorageUnavailable(f"cannot read fact '{fact_name}': {exc}") from exc

    def batch_reports(self, batch_id: Optional[int] = None) -> List[Dict[str, Any]]:
        table = self.audit_table
        query = select(table).order_by(table.c.id)
        if batch_id is not None:
            query = query.where(table.c.batch_id == batch_id)
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(query).mappings()]

    def _all_tables(self) -> Iterable:
        return list(self.fact_tables.values()) + list(self.dimension_tables.values()) + [self.audit_table]

    def reset(self) -> None:
        """
        Empty every configured table. On PostgreSQL this is one
        TRUNCATE ... RESTART IDENTITY CASCADE, elsewhere plain DELETEs.
        """
        tables = self._all_tables()
        with self.engine.begin() as conn:
            if self.engine.dialect.name == "postgresql":
                names = ", ".join(t.fullname for t in tables)
                conn.execute(text(f"TRUNCATE TABLE {names} RESTART IDENTITY CASCADE"))
            else:
                for table in tables:
                    conn.execute(table.delete())
