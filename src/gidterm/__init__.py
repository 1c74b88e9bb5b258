"""Graph-driven terminal controller for developer-automation tasks."""

__version__ = "0.1.0"
