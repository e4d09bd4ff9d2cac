"""Turn-taking voice call client."""

__version__ = "0.1.0"
