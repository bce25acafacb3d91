"""TouchPoints visit pattern recognition and suggestion engine."""

__version__ = "0.3.0"
