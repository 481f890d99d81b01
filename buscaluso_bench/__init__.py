"""Benchmark runner and result database for the buscaluso word search."""

__version__ = "0.3.0"
