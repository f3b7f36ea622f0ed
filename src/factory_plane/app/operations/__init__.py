"""Operational tooling for provision runs."""

from .stale_run_detector import StaleRunDetector, StaleRunEntry, SweepReport

__all__ = [
    'StaleRunDetector',
    'StaleRunEntry',
    'SweepReport',
]
