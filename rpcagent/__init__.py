"""Intel AMT activation and inspection agent."""

__version__ = "0.1.0"
