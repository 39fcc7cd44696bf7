"""artwall: AI enrichment jobs for a library of painting photos."""

__version__ = "0.1.0"
