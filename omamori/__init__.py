"""Local blocking DNS server with a radix-tree block list, LRU cache and upstream forwarding."""

__version__ = "1.0.0"
__all__ = ["__version__"]