"""Periodic compaction scheduling."""

from .scheduler import CompactionScheduler, SweepReport

__all__ = ["CompactionScheduler", "SweepReport"]
