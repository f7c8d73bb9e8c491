"""Fish farm inventory lifecycle: stock, storage, disposal, transfers and dispatch."""

__version__ = "0.3.0"
