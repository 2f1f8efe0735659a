# backend/roombook/repositories/resource_repository.py
"""Read-only access to catalog resources."""

from typing import Dict, Iterable, cast

from sqlalchemy.orm import Session

from ..models.resource import Resource
from .base_repository import BaseRepository


class ResourceRepository(BaseRepository[Resource]):
    def __init__(self, db: Session):
        super().__init__(db, Resource)

    def get_many(self, resource_ids: Iterable[str]) -> Dict[str, Resource]:
        ids = list({rid for rid in resource_ids})
        if not ids:
            return {}
        rows = cast(list, self.db.query(Resource).filter(Resource.id.in_(ids)).all())
        return {row.id: row for row in rows}
