"""Vinho: wine label ingestion pipeline and similarity recommendations."""

__version__ = "0.1.0"
