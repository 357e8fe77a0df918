"""Building blocks for a reverse proxy: logging, counters, connections and virtual hosts."""

__version__ = "0.25.1"