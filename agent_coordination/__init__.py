"""Distributed locks and dependency-aware task orchestration for agents."""

__version__ = "0.1.0"
