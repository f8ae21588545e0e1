"""Typed persistence access for categories.

The store only issues queries and flushes; committing is left to the caller so a
whole lifecycle operation can succeed or fail as one transaction.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from catalog.core.errors import NotFound, ValidationError
from catalog.db.models import Category

logger = logging.getLogger("catalog.store")

ANY_PARENT = object()

_REQUIRED_FIELDS = ("name", "slug")
_WRITABLE_FIELDS = {"name", "slug", "description", "image", "parent_id"}
_ORDERINGS = {
    "name": (Category.name.asc(), Category.id.asc()),
    "created": (Category.created_at.asc(), Category.id.asc()),
}


def _ordering(order: str):
    try:
        return _ORDERINGS[order]
    except KeyError:
        raise ValueError(f"Unknown category ordering: {order!r}") from None


class CategoryStore:
    def __init__(self, db: Session):
        self.db = db

    # Reads ---------------------------------------------------------------

    def find_by_id(self, category_id: int, *, only_visible: bool = False) -> Optional[Category]:
        category = self.db.get(Category, category_id)
        if category is None or (only_visible and not category.visible):
            return None
        return category

    def find_by_slug(self, slug: str, *, only_visible: bool = True) -> Optional[Category]:
        stmt = select(Category).where(Category.slug == slug)
        if only_visible:
            stmt = stmt.where(Category.visible.is_(True))
        # Hidden rows may share a slug; prefer the newest.
        return self.db.scalars(stmt.order_by(Category.id.desc())).first()

    def lock(self, category_id: int) -> Category:
        """Load a visible category for a read-modify-write, holding a row lock."""
        category = self.db.scalars(
            select(Category)
            .where(Category.id == category_id, Category.visible.is_(True))
            .with_for_update()
        ).first()
        if category is None:
            raise NotFound(f"Category {category_id} not found.", category_id=category_id)
        return category

    def list_children(
        self,
        parent_id: Optional[int],
        *,
        only_visible: bool = True,
        order: str = "name",
    ) -> List[Category]:
        return self.list_categories(only_visible=only_visible, parent_id=parent_id, order=order)

    def list_categories(
        self,
        *,
        only_visible: bool = True,
        parent_id=ANY_PARENT,
        name_contains: Optional[str] = None,
        order: str = "name",
    ) -> List[Category]:
        stmt = select(Category)
        if only_visible:
            stmt = stmt.where(Category.visible.is_(True))
        if parent_id is None:
            stmt = stmt.where(Category.parent_id.is_(None))
        elif parent_id is not ANY_PARENT:
            stmt = stmt.where(Category.parent_id == parent_id)
        if name_contains:
            stmt = stmt.where(func.lower(Category.name).contains(name_contains.strip().lower()))
        return list(self.db.scalars(stmt.order_by(*_ordering(order))).all())

    def parent_map(self) -> Dict[int, Optional[int]]:
        """Adjacency map of every category row, hidden ones included."""
        rows = self.db.execute(select(Category.id, Category.parent_id)).all()
        return {row.id: row.parent_id for row in rows}

    def count(self, *, only_visible: bool = False) -> int:
        stmt = select(func.count(Category.id))
        if only_visible:
            stmt = stmt.where(Category.visible.is_(True))
        return self.db.scalar(stmt) or 0

    # Slugs ---------------------------------------------------------------

    def slug_taken(self, slug: str, *, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(Category.active_slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.db.scalar(stmt.limit(1)) is not None

    def next_available_slug(self, base: str, *, exclude_id: Optional[int] = None) -> str:
        """Return ``base`` or the first free ``base-2``, ``base-3``, ... among visible rows."""
        if not base:
            raise ValidationError("Unable to generate a valid slug.", field="slug")
        slug = base
        counter = 1
        while self.slug_taken(slug, exclude_id=exclude_id):
            counter += 1
            slug = f"{base}-{counter}"
        return slug

    # Writes --------------------------------------------------------------

    def create(self, **fields) -> Category:
        _check_fields(fields)
        missing = [name for name in _REQUIRED_FIELDS if not fields.get(name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}.", fields=missing)

        category = Category(visible=True, active_slug=fields["slug"], **fields)
        self.db.add(category)
        self.db.flush()
        logger.debug("category_row_inserted", extra={"category_id": category.id})
        return category

    def update(self, category_id: int, **fields) -> Category:
        _check_fields(fields)
        blank = [name for name in _REQUIRED_FIELDS if name in fields and not fields[name]]
        if blank:
            raise ValidationError(f"Required fields cannot be empty: {', '.join(blank)}.", fields=blank)

        category = self._get_or_raise(category_id)
        for name, value in fields.items():
            setattr(category, name, value)
        if "slug" in fields and category.visible:
            category.active_slug = fields["slug"]
        self.db.flush()
        return category

    def set_visible(self, category_id: int, visible: bool) -> Category:
        category = self._get_or_raise(category_id)
        category.visible = visible
        category.active_slug = category.slug if visible else None
        self.db.flush()
        return category

    def _get_or_raise(self, category_id: int) -> Category:
        category = self.db.get(Category, category_id)
        if category is None:
            raise NotFound(f"Category {category_id} not found.", category_id=category_id)
        return category


def _check_fields(fields) -> None:
    unknown = sorted(set(fields) - _WRITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown category fields: {', '.join(unknown)}.", fields=unknown)
