# File: flows/etl_flows.py

import os
from datetime import date
from typing import Dict, Mapping, Optional

import requests
from prefect import flow, task
from prefect.cache_policies import NONE

from data_sources.rdbms import make_engine
from notifications.telegram import format_summary, send_telegram_message
from warehouse import config as settings
from warehouse.config import load_config
from warehouse.etl import LoadSummary, WarehouseLoader, csv_sources
from warehouse.fact_loader import FactLoadResult
from warehouse.reconciler import ReconciliationResult
from warehouse.resolver import KeyResolver
from warehouse.staging import StagingBatch
from warehouse.store import SqlStore

PIPELINE_CONFIG = os.getenv("PIPELINE_CONFIG", "config/example_pipeline.json")


def batch_id_for(execution_date: date) -> int:
    """Batch ids are the execution date as YYYYMMDD."""
    return int(execution_date.strftime("%Y%m%d"))


def _notify(message: str) -> None:
    # A broken notification channel must never fail the load itself.
    try:
        send_telegram_message(message)
    except (requests.RequestException, RuntimeError) as exc:
        print(f"⚠️  Telegram notification not sent: {exc}")


# ─────────────────────────────────────────────────────────────────────────────
@task(name="notify_start", retries=0, retry_delay_seconds=0, log_prints=True)
def notify_start(batch_id: int):
    _notify(f"🚀 Starting dimensional load for batch {batch_id}")


@task(name="notify_success", retries=0, retry_delay_seconds=0, log_prints=True, cache_policy=NONE)
def notify_success(summary: LoadSummary):
    _notify(f"✅ Dimensional load succeeded\n{format_summary(summary)}")


@task(name="notify_failure", retries=0, retry_delay_seconds=0, log_prints=True)
def notify_failure(batch_id: int, error_msg: str):
    _notify(f"❌ Dimensional load FAILED for batch {batch_id}\nError: {error_msg}")


# ─────────────────────────────────────────────────────────────────────────────
@task(
    name="ingest_feed",
    retries=1,
    retry_delay_seconds=60,
    timeout_seconds=settings.INGEST_TIMEOUT_SECONDS,
    log_prints=True,
    cache_policy=NONE,
)
def ingest_feed(loader: WarehouseLoader, feed: str, source) -> StagingBatch:
    """
    Stage one feed. The ingestor already retries storage failures with
    backoff and enforces INGEST_TIMEOUT_SECONDS; Prefect retries the whole
    task once more after a minute.
    """
    return loader.ingest(feed, source)


@task(name="reconcile_dimension", retries=0, log_prints=True, cache_policy=NONE)
def reconcile_dimension(loader: WarehouseLoader, name: str, batch: StagingBatch, batch_id: int) -> ReconciliationResult:
    return loader.reconcile(name, batch, batch_id)


@task(name="load_fact_table", retries=0, log_prints=True, cache_policy=NONE)
def load_fact_table(
    loader: WarehouseLoader, name: str, batch: StagingBatch, batch_id: int, resolvers: Mapping[str, KeyResolver]
) -> FactLoadResult:
    return loader.load_fact(name, batch, batch_id, resolvers)


@task(name="commit_batch", retries=0, log_prints=True, cache_policy=NONE)
def commit_batch(loader: WarehouseLoader, summary: LoadSummary) -> None:
    loader.commit(summary)


# ─────────────────────────────────────────────────────────────────────────────
def run_load_tasks(loader: WarehouseLoader, sources: Mapping[str, object], batch_id: int) -> LoadSummary:
    """
    1) Stage every feed.
    2) Reconcile all dimensions concurrently and wait for every one of them.
    3) Resolve facts against the reconciled dimensions.
    4) Commit dimensions, facts and reports in one step.
    """
    summary = LoadSummary(batch_id)
    for feed, source in sources.items():
        summary.staged[feed] = ingest_feed(loader, feed, source)

    futures: Dict[str, object] = {
        name: reconcile_dimension.submit(loader, name, batch, batch_id)
        for name, batch in summary.staged.items()
        if name in loader.config.dimensions
    }
    summary.dimensions = {name: future.result() for name, future in futures.items()}

    resolvers = loader.resolvers(summary.dimensions)
    for feed, batch in summary.staged.items():
        if feed in loader.config.facts:
            summary.facts[feed] = load_fact_table(loader, feed, batch, batch_id, resolvers)

    commit_batch(loader, summary)
    return summary


@flow(name="dimensional_load_flow", log_prints=True)
def dimensional_load_flow(config_path: str = PIPELINE_CONFIG, execution_date: Optional[date] = None):
    """
    1) Compute batch_id from execution_date (YYYYMMDD).
    2) Send “starting” message to Telegram.
    3) Run the load tasks.
    4) On success: send the per-stage summary.
    5) On exception: send “failure” message and re‐raise.
    """
    batch_id = batch_id_for(execution_date or date.today())
    notify_start(batch_id)

    try:
        config = load_config(config_path)
        store = SqlStore(make_engine(), config, schema=settings.DW_SCHEMA)
        loader = WarehouseLoader(config, store)
        summary = run_load_tasks(loader, csv_sources(config), batch_id)
        notify_success(summary)
        print("\n".join(summary.lines()))
        return summary
    except Exception as e:
        notify_failure(batch_id, str(e))
        raise


# ─────────────────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    # Serve the flow from this process on a nightly cron (02:00) until CTRL+C.
    dimensional_load_flow.serve(
        name="nightly-dimensional-load",
        cron="0 2 * * *",
        tags=["dimensional_dw"],
        pause_on_shutdown=False,
    )
