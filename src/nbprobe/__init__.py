"""nbprobe: notebook kernel execution and object inspection."""

__version__ = "0.1.0"
