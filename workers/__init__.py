"""Background workers for the marketplace engine."""
from .expiry_sweep import ExpirySweeper

__all__ = ['ExpirySweeper']
