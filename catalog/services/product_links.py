"""Membership rows between products and categories.

The linker owns ``product_categories`` only and never writes through
``Product.categories``, which is a read-only relationship.
"""

import logging
from typing import Iterable, List, Set

from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from catalog.core.errors import NotFound
from catalog.db.models import Category, Product, product_categories

logger = logging.getLogger("catalog.links")


class ProductCategoryLinker:
    def __init__(self, db: Session):
        self.db = db

    def category_ids_of(self, product_id: int) -> Set[int]:
        rows = self.db.scalars(
            select(product_categories.c.category_id).where(product_categories.c.product_id == product_id)
        ).all()
        return set(rows)

    def get_categories_of(self, product_id: int, *, only_visible: bool = False) -> Set[Category]:
        stmt = (
            select(Category)
            .join(product_categories, product_categories.c.category_id == Category.id)
            .where(product_categories.c.product_id == product_id)
        )
        if only_visible:
            stmt = stmt.where(Category.visible.is_(True))
        return set(self.db.scalars(stmt).all())

    def products_in(self, category_id: int, *, only_visible: bool = True) -> List[Product]:
        stmt = (
            select(Product)
            .join(product_categories, product_categories.c.product_id == Product.id)
            .where(product_categories.c.category_id == category_id)
        )
        if only_visible:
            stmt = stmt.where(Product.visible.is_(True))
        return list(self.db.scalars(stmt.order_by(Product.id.asc())).all())

    def replace_category(self, product_id: int, old_category_id: int, new_category_id: int) -> None:
        """Swap one membership for another, leaving the product's other categories alone."""
        if old_category_id != new_category_id:
            self.db.execute(
                delete(product_categories).where(
                    product_categories.c.product_id == product_id,
                    product_categories.c.category_id == old_category_id,
                )
            )
        self._link(product_id, new_category_id)

    def set_categories(self, product_id: int, category_ids: Iterable[int]) -> Set[int]:
        """Replace every membership of ``product_id``; returns the ids actually linked.

        Ids that do not reference a visible category are dropped.
        """
        if self.db.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found.", product_id=product_id)

        requested = {int(category_id) for category_id in category_ids}
        wanted: Set[int] = set()
        if requested:
            wanted = set(
                self.db.scalars(
                    select(Category.id).where(Category.id.in_(requested), Category.visible.is_(True))
                ).all()
            )
        dropped = requested - wanted
        if dropped:
            logger.info(
                "product_categories_dropped_unknown",
                extra={"product_id": product_id, "category_ids": sorted(dropped)},
            )

        current = self.category_ids_of(product_id)
        stale = current - wanted
        if stale:
            self.db.execute(
                delete(product_categories).where(
                    product_categories.c.product_id == product_id,
                    product_categories.c.category_id.in_(stale),
                )
            )
        for category_id in sorted(wanted - current):
            self._link(product_id, category_id)
        return wanted

    def _link(self, product_id: int, category_id: int) -> None:
        exists = self.db.scalar(
            select(product_categories.c.product_id).where(
                product_categories.c.product_id == product_id,
                product_categories.c.category_id == category_id,
            )
        )
        if exists is None:
            self.db.execute(insert(product_categories).values(product_id=product_id, category_id=category_id))
