"""Question answering over a competition rules manual."""

__version__ = "0.1.0"
