"""Ingestion and maintenance pipelines."""
