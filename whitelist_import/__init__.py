"""Client-side whitelist address processing and batched session upload."""

__version__ = "0.1.0"
