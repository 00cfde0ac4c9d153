"""SKU settings."""

import logging

from sqlalchemy.orm import Session

from vendrun.core.errors import EntityNotFound
from vendrun.models.sku import SKU
from vendrun.services.count_pointer import normalize_pointer

logger = logging.getLogger(__name__)


class SKUService:
    def __init__(self, db: Session):
        self.db = db

    def get_sku(self, sku_id: int) -> SKU:
        sku = self.db.query(SKU).filter(SKU.id == sku_id).first()
        if not sku:
            raise EntityNotFound("SKU", sku_id)
        return sku

    def set_count_pointer(self, sku_id: int, pointer: str) -> SKU:
        """Change which imported field drives future pick counts for this SKU.

        Existing pick entries keep the count they were generated with.
        """
        sku = self.get_sku(sku_id)
        new_pointer = normalize_pointer(pointer)
        if sku.count_needed_pointer != new_pointer.value:
            logger.info(f"SKU {sku.code}: count pointer {sku.count_needed_pointer} -> {new_pointer.value}")
            sku.count_needed_pointer = new_pointer.value
        self.db.flush()
        return sku
