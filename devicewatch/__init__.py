"""Device monitoring service: SQLite storage, tag rules over device messages, reports and an HTTP API."""

__version__ = "0.1.0"