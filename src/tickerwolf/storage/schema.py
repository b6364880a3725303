"""DDL for the ticker tables the audit reads.

Constraints are intentionally absent on child tables: the store is filled by
external ingestion jobs and the audit's cross-checks are what detect
orphans and duplicates.
"""

from __future__ import annotations

TABLES: dict[str, str] = {
    "tickers": """
        CREATE TABLE IF NOT EXISTS tickers (
            id BIGINT PRIMARY KEY,
            ticker VARCHAR NOT NULL UNIQUE,
            name VARCHAR,
            market VARCHAR,
            primary_exchange VARCHAR,
            type VARCHAR,
            active BOOLEAN,
            last_updated_utc TIMESTAMP,
            delisted_utc TIMESTAMP
        )
    """,
    "ticker_price_histories": """
        CREATE TABLE IF NOT EXISTS ticker_price_histories (
            id BIGINT,
            ticker_id BIGINT,
            resolution VARCHAR DEFAULT '1d',
            t TIMESTAMP,
            o DOUBLE,
            h DOUBLE,
            l DOUBLE,
            c DOUBLE,
            v BIGINT
        )
    """,
    "ticker_indicators": """
        CREATE TABLE IF NOT EXISTS ticker_indicators (
            id BIGINT,
            ticker_id BIGINT,
            resolution VARCHAR DEFAULT '1d',
            t TIMESTAMP,
            indicator VARCHAR,
            value DOUBLE,
            meta VARCHAR
        )
    """,
    "ticker_feature_snapshots": """
        CREATE TABLE IF NOT EXISTS ticker_feature_snapshots (
            id BIGINT,
            ticker_id BIGINT,
            t DATE,
            indicators VARCHAR,
            embedding VARCHAR
        )
    """,
    "ticker_feature_metrics": """
        CREATE TABLE IF NOT EXISTS ticker_feature_metrics (
            id BIGINT,
            ticker_id BIGINT,
            t DATE,
            sharpe_60 DOUBLE,
            volatility_30 DOUBLE,
            drawdown DOUBLE,
            beta_60 DOUBLE,
            momentum_10 DOUBLE
        )
    """,
}
