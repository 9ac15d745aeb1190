"""Generators module for creating synthetic reference data."""

from kitflow.generators.network import NetworkGenerator, write_reference_csv

__all__ = [
    "NetworkGenerator",
    "write_reference_csv",
]
