"""Core engine - derives diagnostics and replays the dataset.

Contains:
- derive / normalize: Pure sample -> DiagnosticRecord derivation
- CyclingScheduler: Periodic replay with a single latest-record slot
"""

from .derivation import derive, normalize
from .cycling_scheduler import CyclingScheduler, format_timestamp

__all__ = ['derive', 'normalize', 'CyclingScheduler', 'format_timestamp']
