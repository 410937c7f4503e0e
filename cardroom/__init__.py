"""Card-room floor service: seats, chip custody and in-venue requests."""

__version__ = "1.0.0"
