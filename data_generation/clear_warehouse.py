#!/usr/bin/env python3
"""
clear_warehouse.py

Usage:
  # Delete all rows (and reset identities) in every table of a pipeline config.
  python -m data_generation.clear_warehouse config/example_pipeline.json
"""

import sys

from data_sources.rdbms import make_engine
from warehouse import config as settings
from warehouse.config import load_config
from warehouse.store import SqlStore


# ───────────── Clear Warehouse Function ─────────────────────────────────────────
def clear_warehouse(config_path: str, url: str = None, schema: str = settings.DW_SCHEMA) -> None:
    """
    Empty every dimension, fact and audit table named by the config.
    On PostgreSQL this is TRUNCATE ... RESTART IDENTITY CASCADE, so:
      • All rows are removed.
      • The fact tables' identity columns restart at 1.
    """
    store = SqlStore(make_engine(url), load_config(config_path), schema=schema)
    store.reset()
    print("✅ All warehouse tables truncated (identities reset).")


# ───────────── Main Entrypoint ───────────────────────────────────────────────────
if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    clear_warehouse(sys.argv[1])
