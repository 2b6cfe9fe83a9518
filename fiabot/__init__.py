"""FIA document bot: posts new FIA decision documents to Threads."""

__version__ = "1.0.0"
