"""Studio Shot: product-photo enhancement with a local job store."""

__version__ = "0.1.0"
