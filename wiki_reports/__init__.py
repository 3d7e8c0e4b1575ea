"""Test report aggregation and wiki publishing."""

__version__ = "0.1.0"
