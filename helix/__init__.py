"""Session scheduler for spoken-language courses (triple-helix interleaving)."""

__version__ = "0.4.0"
