"""Asset ingestion and status reconciliation engine."""
