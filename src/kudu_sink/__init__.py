"""CDC sink that replays row-level mutation events into Apache Kudu."""

__version__ = "0.1.0"
