"""Kiln: quality assurance and self-healing for generated interactive artifacts."""

__version__ = "0.4.0"
