"""Dataset loading - reads and validates the replayed telemetry file."""

from .loader import load_dataset, load_samples, validate_samples, summarize

__all__ = ['load_dataset', 'load_samples', 'validate_samples', 'summarize']
