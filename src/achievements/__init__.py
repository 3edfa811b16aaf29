"""Achievement workflow engine — submission lifecycle, dual-store sync, access control."""

__version__ = "0.1.0"
