"""GiftGhost request governance and traceability API."""

__version__ = "0.1.0"
