"""InstaCampus: campus food and stationery ordering API."""

__version__ = "0.1.0"
