"""Duty-swap matching and batch-offer engine for crew rosters."""

from .classifier import classify
from .dedup import filter_new
from .pairing import pair
from .segmenter import segment
from .submitter import SwapSubmitter

__version__ = "1.0.0"

__all__ = ["classify", "segment", "filter_new", "pair", "SwapSubmitter", "__version__"]
