"""
Importer-related SQLAlchemy models.
"""

from .schema import WaEntityType, WaIdMapping, WaSyncState

__all__ = ["WaEntityType", "WaIdMapping", "WaSyncState"]
