"""
Store: the per-owner actor holding links and their vector references.

Public surface
--------------
- :class:`OwnerStore`: single-writer-per-owner store with similarity lookup.
- :class:`Link`, :class:`VectorRef`: persisted domain models.
"""

from postmarks.store.models import Link, VectorRef
from postmarks.store.owner_store import OwnerStore

__all__ = ["Link", "OwnerStore", "VectorRef"]
