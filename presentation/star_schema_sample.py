#!/usr/bin/env python3
# star_schema_sample.py

import sys
from typing import Optional

import pandas as pd
from sqlalchemy import select
from sqlalchemy.engine import Engine

from data_sources.model import build_metadata, dimension_table_name, fact_table_name
from data_sources.rdbms import make_engine
from warehouse import config as settings
from warehouse.config import PipelineConfig, load_config


# ─── FUNCTIONS ────────────────────────────────────────────────────────────────
def sample_table(engine: Engine, table: str, schema: Optional[str] = None, limit: int = 5) -> pd.DataFrame:
    """
    Fetch up to `limit` rows from `schema.table` into a DataFrame.
    """
    qualified = f"{schema}.{table}" if schema else table
    sql = f"SELECT * FROM {qualified} LIMIT {int(limit)}"
    return pd.read_sql_query(sql, engine)  # https://pandas.pydata.org/docs/reference/api/pandas.read_sql_query.html


def member_history(engine: Engine, config: PipelineConfig, dimension: str, business_key,
                   schema: Optional[str] = None) -> pd.DataFrame:
    """
    Every stored version of one dimension member, oldest first. The last row
    is the current version.
    """
    _, dimensions, _, _ = build_metadata(config, schema=schema)
    table = dimensions[dimension]
    query = (
        select(table)
        .where(table.c.business_key == business_key)
        .order_by(table.c.surrogate_key)
    )
    return pd.read_sql_query(query, engine)


def print_table(df: pd.DataFrame, title: str) -> None:
    print(f"\n--- {title} ---")
    print(df.to_string(index=False))


# ─── MAIN ─────────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m presentation.star_schema_sample <config.json>")
        sys.exit(1)

    config = load_config(sys.argv[1])
    engine = make_engine()
    schema = settings.DW_SCHEMA

    # 1) Sample every dimension table
    for name in config.dimensions:
        table = dimension_table_name(name)
        print_table(sample_table(engine, table, schema), f"Sample rows from {schema}.{table} (Dimension)")

    # 2) Then every fact table
    for name in config.facts:
        table = fact_table_name(name)
        print_table(sample_table(engine, table, schema), f"Sample rows from {schema}.{table} (Fact)")
