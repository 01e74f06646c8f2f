"""Table storage interfaces and backends."""
