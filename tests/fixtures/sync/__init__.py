"""
Test fixtures and factories for the sync engine components.
"""

from .factories import BASE_TIME, FetchResultFactory, ItemRecordFactory, iso

__all__ = [
    "BASE_TIME",
    "FetchResultFactory",
    "ItemRecordFactory",
    "iso",
]
