"""HTTP control plane for the report pipeline."""

__version__ = "0.4.0"
