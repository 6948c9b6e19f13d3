"""
Object cache with background reclamation.

Clients store and fetch opaque blobs by key over HTTP behind Basic
credentials. A periodic reclamation cycle expires idle objects and evicts
least-recently-used objects once the cache exceeds its size budget.
"""

__version__ = "0.1.0"
