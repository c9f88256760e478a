"""Solvent Waterfall: client-side controller for the staged code pipeline."""

__version__ = "0.4.0"
