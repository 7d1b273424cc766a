"""downtime-bench — measure service downtime during maintenance windows."""

__version__ = "0.1.0"
