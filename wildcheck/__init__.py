"""wildcheck: filter wildcard DNS artifacts out of subdomain lists."""

__version__ = "0.3.0"
