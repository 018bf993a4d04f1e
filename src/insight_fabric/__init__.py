"""Insight Fabric: a unified intelligence graph engine."""

__version__ = "0.1.0"
