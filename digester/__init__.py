"""Digester - update ingestion and email digest pipeline."""

__version__ = "0.1.0"
