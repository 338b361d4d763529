"""specvital-collector: background worker that extracts test inventories from repositories."""

__version__ = "0.1.0"
