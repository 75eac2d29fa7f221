"""
Retention module for the snapshot service.

Retires old snapshots by keeping only the newest N generations per object
class, ordered by the timestamp embedded in each key.
"""

from .pruner import PruneResult, RetentionClass, RetentionPruner

__all__ = ["RetentionPruner", "RetentionClass", "PruneResult"]
