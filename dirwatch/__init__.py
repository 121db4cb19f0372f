"""Dirwatch - watch folders for data files and ingest them into a time-series backend."""

__version__ = "0.3.0"
