"""Ingestion building blocks: chunking and batched embedding."""
