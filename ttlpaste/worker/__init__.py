"""
Background workers.

The only worker is the purge sweep, which deletes pastes that can no longer
be served. Reads never rely on it.
"""

from .purge_worker import purge_once, start_purge_worker

__all__ = ["purge_once", "start_purge_worker"]
