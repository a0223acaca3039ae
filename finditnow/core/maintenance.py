"""Maintenance mode switch, stored as one document in the config collection."""

from typing import Optional

from ..db.store import DocumentStore
from ..observability import get_logger
from ..schemas import MaintenanceConfig
from ..schemas.maintenance import DEFAULT_MAINTENANCE_MESSAGE


logger = get_logger("finditnow.maintenance")

CONFIG = "config"
MAINTENANCE_ID = "maintenance"


class MaintenanceService:

    def __init__(self, store: DocumentStore):
        self._store = store

    def get(self) -> MaintenanceConfig:
        doc = self._store.get(CONFIG, MAINTENANCE_ID)
        return MaintenanceConfig.model_validate(doc) if doc else MaintenanceConfig()

    def set(self, is_enabled: bool, message: Optional[str] = None) -> MaintenanceConfig:
        with self._store.begin_batch() as ctx:
            current = ctx.get(CONFIG, MAINTENANCE_ID)
            doc = {
                "id": MAINTENANCE_ID,
                "is_enabled": is_enabled,
                "message": message or (current or {}).get("message") or DEFAULT_MAINTENANCE_MESSAGE,
            }
            if current is None:
                stored = ctx.insert(CONFIG, doc)
            else:
                stored = ctx.update(CONFIG, doc, expected_version=current["version"])
            ctx.commit()

        logger.warning("Maintenance mode changed", enabled=is_enabled)
        return MaintenanceConfig.model_validate(stored)
