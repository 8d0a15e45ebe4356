"""Court booking backend: slot availability, pricing and reservation holds."""

__version__ = "0.1.0"
