"""Identity verification application review service."""

__version__ = "0.1.0"
