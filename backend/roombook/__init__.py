"""Roombook backend: shared-resource reservations with approval and payment."""

__version__ = "0.1.0"
