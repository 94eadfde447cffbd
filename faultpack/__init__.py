"""FaultKit implementation package: runtime fault capture, classification and reporting."""

__version__ = "0.1.0"
