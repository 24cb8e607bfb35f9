"""
Job search providers.
"""
from app.providers.base import JobSearchProvider, ListingData, derive_external_id
from app.providers.jsearch import JSearchProvider

__all__ = [
    "JobSearchProvider",
    "ListingData",
    "derive_external_id",
    "JSearchProvider",
]
