"""Combinatorial LMSR market over 2^N worlds."""

__version__ = "0.1.0"
