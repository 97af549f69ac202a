from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from data_sources.model import build_metadata
from warehouse import config as settings
from warehouse.config import PipelineConfig


def make_engine(url: Optional[str] = None, echo: bool = False) -> Engine:
    return create_engine(url or settings.DB_URL, echo=echo)


def init_db(engine: Engine, config: PipelineConfig, schema: Optional[str] = None):
    """
    Creates the schema (PostgreSQL only) and every dimension, fact and audit
    table of `config`. Returns the MetaData bundle from build_metadata().
    """
    if schema and engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))

    bundle = build_metadata(config, schema=schema)
    bundle[0].create_all(bind=engine)
    return bundle
