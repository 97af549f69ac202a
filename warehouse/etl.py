#!/usr/bin/env python3

"""
etl.py

Usage:
  # Full initial load: empty every configured table, then load as batch 1
  python -m warehouse.etl full config/example_pipeline.json

  # Incremental load (pass the next batch_id, e.g. 2, 3, …)
  python -m warehouse.etl inc config/example_pipeline.json 2

Runs one batch:

  1. ingest every feed named in the config into staging
  2. reconcile every dimension (in parallel, one reconciler per dimension)
     and wait for all of them
  3. build a Key Resolver per reconciled dimension
  4. resolve every fact feed against them
  5. commit dimensions, fact rows and reports in one step; nothing of the
     batch is visible if any stage fails

Row-level problems are counted in the per-stage reports; batch-level
errors (KeyCollision, StorageUnavailable, IngestionCancelled) abort the run.
"""

import datetime
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import pytz

from data_sources.files import CsvSource
from data_sources.rdbms import make_engine
from warehouse import config as settings
from warehouse.config import ConfigError, PipelineConfig, load_config
from warehouse.errors import BatchReport
from warehouse.fact_loader import FactLoader, FactLoadResult
from warehouse.reconciler import DimensionReconciler, ReconciliationResult
from warehouse.resolver import KeyResolver
from warehouse.staging import CancelToken, StagingBatch, StagingIngestor, StagingSchema
from warehouse.store import SqlStore, WarehouseStore


def _now() -> datetime.datetime:
    return datetime.datetime.now(pytz.UTC)


@dataclass
class LoadSummary:
    batch_id: int
    staged: Dict[str, StagingBatch] = field(default_factory=dict)
    dimensions: Dict[str, ReconciliationResult] = field(default_factory=dict)
    facts: Dict[str, FactLoadResult] = field(default_factory=dict)

    @property
    def reports(self) -> List[BatchReport]:
        reports = [batch.report for batch in self.staged.values()]
        reports += [result.report for result in self.dimensions.values()]
        reports += [result.report for result in self.facts.values()]
        return reports

    @property
    def rejected(self) -> int:
        return sum(r.rejected_count for r in self.reports)

    def lines(self) -> List[str]:
        return [report.summary() for report in self.reports]


class WarehouseLoader:
    """
    Runs batches for one pipeline config against one store. Each dimension
    gets its own reconciler, and with it its own surrogate-key counter, for
    the lifetime of the loader.
    """

    def __init__(
        self,
        config: PipelineConfig,
        store: WarehouseStore,
        max_workers: int = settings.RECONCILE_WORKERS,
        ingestor_options: Optional[Mapping] = None,
    ):
        self.config = config
        self.store = store
        self.max_workers = max(1, max_workers)
        self.ingestor_options = dict(ingestor_options or {})
        self.reconcilers = {
            name: DimensionReconciler(dim, max_workers=self.max_workers)
            for name, dim in config.dimensions.items()
        }

    # ───────────── 1) Staging ───────────────────────────────────────────────────
    def schema_for(self, feed: str) -> StagingSchema:
        if feed in self.config.dimensions:
            return StagingSchema.for_dimension(self.config.dimensions[feed])
        if feed in self.config.facts:
            return StagingSchema.for_fact(self.config.facts[feed])
        raise ConfigError(f"feed '{feed}' is neither a configured dimension nor a fact")

    def ingest(self, feed: str, source, cancel_token: Optional[CancelToken] = None) -> StagingBatch:
        ingestor = StagingIngestor(self.schema_for(feed), **self.ingestor_options)
        batch = ingestor.ingest(source, name=feed, cancel_token=cancel_token)
        print(f"   • staged {feed}: {batch.report.summary()}")
        return batch

    # ───────────── 2) Dimensions ────────────────────────────────────────────────
    def reconcile(self, name: str, batch: StagingBatch, batch_id: int) -> ReconciliationResult:
        dimension = self.store.load_dimension(name)
        result = self.reconcilers[name].reconcile(dimension, batch.records, batch_id=batch_id)
        print(f"   • reconciled {name}: {result.report.summary()}")
        return result

    def reconcile_all(self, batches: Mapping[str, StagingBatch], batch_id: int) -> Dict[str, ReconciliationResult]:
        """
        Reconcile every staged dimension concurrently. Returns only once all of
        them are done; the first batch-level error is re-raised.
        """
        names = [name for name in batches if name in self.config.dimensions]
        if not names:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(names))) as pool:
            futures = {name: pool.submit(self.reconcile, name, batches[name], batch_id) for name in names}
            return {name: future.result() for name, future in futures.items()}

    def commit(self, summary: LoadSummary) -> None:
        """Publish dimensions, append facts and record every report in one step."""
        self.store.commit_batch(
            list(summary.dimensions.values()),
            {name: result.rows for name, result in summary.facts.items()},
            batch_id=summary.batch_id,
            reports=summary.reports,
        )
        if summary.dimensions:
            print(f"   • published dimensions: {', '.join(summary.dimensions)}")
        for name, result in summary.facts.items():
            print(f"   • appended {result.loaded} rows to fact_{name}")

    # ───────────── 3) + 4) Keys and facts ───────────────────────────────────────
    def resolvers(self, results: Optional[Mapping[str, ReconciliationResult]] = None) -> Dict[str, KeyResolver]:
        """
        One resolver per dimension, reading the snapshot reconciled in this
        batch where there is one and the published snapshot otherwise.
        """
        results = results or {}
        return {
            name: KeyResolver.for_config(
                results[name].dimension if name in results else self.store.load_dimension(name), dim
            )
            for name, dim in self.config.dimensions.items()
        }

    def load_fact(
        self, name: str, batch: StagingBatch, batch_id: int, resolvers: Optional[Mapping[str, KeyResolver]] = None
    ) -> FactLoadResult:
        loader = FactLoader(self.config.facts[name], resolvers or self.resolvers())
        result = loader.load(batch.records, batch_id=batch_id)
        print(f"   • resolved fact_{name}: {result.report.summary()}")
        return result

    # ───────────── Whole batch ──────────────────────────────────────────────────
    def run(self, sources: Mapping[str, object], batch_id: int, cancel_token: Optional[CancelToken] = None) -> LoadSummary:
        print(f"[{_now()}] ▶️  Starting load (batch_id={batch_id})\n")
        summary = LoadSummary(batch_id)

        for feed, source in sources.items():
            summary.staged[feed] = self.ingest(feed, source, cancel_token)

        summary.dimensions = self.reconcile_all(summary.staged, batch_id)

        resolvers = self.resolvers(summary.dimensions)
        for feed, batch in summary.staged.items():
            if feed in self.config.facts:
                summary.facts[feed] = self.load_fact(feed, batch, batch_id, resolvers)

        # Nothing from this batch is visible until here.
        self.commit(summary)

        print(f"\n[{_now()}] ✅ Load complete (batch_id={batch_id}, rejected rows={summary.rejected}).\n")
        return summary


def csv_sources(config: PipelineConfig) -> Dict[str, CsvSource]:
    """
    CsvSource per configured feed path, dimensions first so the dict order
    matches the load order.
    """
    ordered = [f for f in config.dimensions if f in config.sources]
    ordered += [f for f in config.sources if f not in config.dimensions]
    return {feed: CsvSource(config.sources[feed]) for feed in ordered}


def run_full_load(config_path: str) -> LoadSummary:
    config = load_config(config_path)
    store = SqlStore(make_engine(), config, schema=settings.DW_SCHEMA)
    store.reset()
    print("   • truncated all configured tables\n")
    return WarehouseLoader(config, store).run(csv_sources(config), batch_id=1)


def run_incremental_load(config_path: str, batch_id: int) -> LoadSummary:
    config = load_config(config_path)
    store = SqlStore(make_engine(), config, schema=settings.DW_SCHEMA)
    return WarehouseLoader(config, store).run(csv_sources(config), batch_id=batch_id)


if __name__ == "__main__":
    if len(sys.argv) < 3 or sys.argv[1] not in ("full", "inc"):
        print(__doc__)
        sys.exit(1)

    if sys.argv[1] == "full":
        run_full_load(sys.argv[2])
    else:
        if len(sys.argv) < 4:
            print("Error: Please provide batch_id for incremental load")
            print(__doc__)
            sys.exit(1)
        run_incremental_load(sys.argv[2], int(sys.argv[3]))
