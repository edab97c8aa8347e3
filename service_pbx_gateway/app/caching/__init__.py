"""
Gateway caching package.

Read results from the appliance are held in-process with a freshness
window chosen per read. Writes invalidate explicitly.
"""

from .result_cache import CacheEntry, ResultCache

__all__ = ["CacheEntry", "ResultCache"]
