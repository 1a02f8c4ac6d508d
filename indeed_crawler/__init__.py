"""Indeed Crawler — paginated job search crawler with resilient extraction."""

__version__ = "1.0.0"
