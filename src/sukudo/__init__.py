"""Sukudo: audio enhancement pipeline and job orchestrator."""

__version__ = "0.1.0"
