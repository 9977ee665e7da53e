"""Version information for hookrelay."""

__version__ = "0.3.0"
