"""Link shortener: short tokens owned by API keys, with scheduled expiry."""

__version__ = "1.0.0"
