"""UniConnect Hub: realtime view-models over a hosted social backend."""

__version__ = "0.1.0"
