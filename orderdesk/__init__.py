"""Order add-on consolidation and production batch allocation service."""

__version__ = "0.1.0"
