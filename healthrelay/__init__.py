"""healthrelay: health report export and aggregation."""

__version__ = "0.1.0"
