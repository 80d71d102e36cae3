"""frailearn: adaptive progress and review scheduling engine."""

__version__ = "0.1.0"
