"""
Google account credential lifecycle service.

Links each store to one Google account, keeps its OAuth tokens encrypted
at rest, and refreshes them before they expire.
"""

__version__ = "0.1.0"
