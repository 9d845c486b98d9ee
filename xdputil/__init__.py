"""Building blocks for XDP command-line tools: logging, option parsing, statistics, lock files and PcapNG writing."""

__version__ = "1.2.2"
__all__ = ["log", "util", "lock", "stats", "params", "pcapng"]