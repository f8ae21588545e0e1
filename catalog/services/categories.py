"""Category lifecycle: create, update, re-parent, delete and restore.

Every operation validates first, then mutates inside a single transaction, then
emits exactly one audit entry once the transaction has committed. Tree checks run
against the adjacency map from ``CategoryStore.parent_map`` rather than ORM
relationships.
"""

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from catalog.core.errors import (
    CircularReference,
    Conflict,
    InvalidParent,
    InvalidTarget,
    NotFound,
    TargetRequired,
    ValidationError,
)
from catalog.core.text import slugify
from catalog.db.models import Category
from catalog.services.audit import ActorContext, AuditAction, AuditLog, snapshot
from catalog.services.category_store import CategoryStore
from catalog.services.product_links import ProductCategoryLinker
from catalog.services.tree import CycleDetected, ancestor_chain, descendant_ids

logger = logging.getLogger("catalog.categories")

TABLE_NAME = "categories"

InputModel = TypeVar("InputModel", bound=BaseModel)


class _CategoryInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class CreateCategoryInput(_CategoryInput):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    image: Optional[str] = Field(default=None, max_length=255)


class UpdateCategoryInput(_CategoryInput):
    """Fields left out of the payload keep their stored value."""

    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    image: Optional[str] = Field(default=None, max_length=255)
    expected_version: Optional[int] = None


class SetParentInput(_CategoryInput):
    parent_id: Optional[int] = None


class DeleteCategoryInput(_CategoryInput):
    move_to_category_id: Optional[int] = None


def parse_input(model: Type[InputModel], payload: Mapping[str, Any]) -> InputModel:
    """Validate a loose payload into an input model, raising ``ValidationError``."""
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
        raise ValidationError(f"Invalid {model.__name__}: {', '.join(fields)}.", fields=fields) from exc


@dataclass(frozen=True)
class DeleteSummary:
    moved_products: int
    moved_children: int
    moved_to: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CategoryLifecycleService:
    def __init__(self, db: Session, audit: AuditLog):
        self.db = db
        self.audit = audit
        self.store = CategoryStore(db)
        self.links = ProductCategoryLinker(db)

    def create(self, data: CreateCategoryInput, actor: Optional[ActorContext] = None) -> Category:
        slug = self.store.next_available_slug(slugify(data.name))
        if data.parent_id is not None:
            self._require_visible_parent(data.parent_id)

        with self._transaction():
            category = self.store.create(
                name=data.name,
                slug=slug,
                description=data.description or None,
                image=data.image or None,
                parent_id=data.parent_id,
            )
            category_id = category.id

        logger.info("category_created", extra={"category_id": category_id, "slug": slug})
        self.audit.record(AuditAction.CREATE, TABLE_NAME, category_id, None, snapshot(category), actor)
        return category

    def update(
        self,
        category_id: int,
        data: UpdateCategoryInput,
        actor: Optional[ActorContext] = None,
    ) -> Category:
        provided = data.model_fields_set
        category = self.store.lock(category_id)
        if data.expected_version is not None and data.expected_version != category.version:
            self.db.rollback()
            raise Conflict(
                f"Category {category_id} changed since it was loaded.",
                category_id=category_id,
                version=category.version,
            )
        if "parent_id" in provided:
            self._check_parent(category_id, data.parent_id)

        fields: Dict[str, Any] = {
            "name": data.name,
            "slug": self.store.next_available_slug(slugify(data.name), exclude_id=category_id),
        }
        for name in ("description", "image", "parent_id"):
            if name in provided:
                value = getattr(data, name)
                fields[name] = value if value != "" else None

        old_values = snapshot(category)
        with self._transaction():
            self.store.update(category_id, **fields)

        logger.info("category_updated", extra={"category_id": category_id})
        self.audit.record(AuditAction.UPDATE, TABLE_NAME, category_id, old_values, snapshot(category), actor)
        return category

    def set_parent(
        self,
        category_id: int,
        data: SetParentInput,
        actor: Optional[ActorContext] = None,
    ) -> Category:
        category = self.store.lock(category_id)
        self._check_parent(category_id, data.parent_id)

        old_values = snapshot(category)
        with self._transaction():
            self.store.update(category_id, parent_id=data.parent_id)

        logger.info("category_parent_set", extra={"category_id": category_id, "parent_id": data.parent_id})
        self.audit.record(AuditAction.UPDATE, TABLE_NAME, category_id, old_values, snapshot(category), actor)
        return category

    def delete(
        self,
        category_id: int,
        data: Optional[DeleteCategoryInput] = None,
        actor: Optional[ActorContext] = None,
    ) -> DeleteSummary:
        target_id = data.move_to_category_id if data else None
        category = self.store.lock(category_id)
        products = self.links.products_in(category_id)
        children = self.store.list_children(category_id)

        if products and target_id is None:
            self.db.rollback()
            raise TargetRequired(
                f"Category {category_id} still has {len(products)} products; choose a category to move them to.",
                category_id=category_id,
                product_count=len(products),
            )
        if target_id is not None:
            self._require_move_target(category_id, target_id)

        old_values = snapshot(category)
        with self._transaction():
            for product in products:
                self.links.replace_category(product.id, category_id, target_id)
            for child in children:
                self.store.update(child.id, parent_id=target_id)
            self.store.set_visible(category_id, False)

        summary = DeleteSummary(moved_products=len(products), moved_children=len(children), moved_to=target_id)
        logger.info("category_deleted", extra={"category_id": category_id, **summary.as_dict()})
        self.audit.record(
            AuditAction.DELETE,
            TABLE_NAME,
            category_id,
            old_values,
            {"visible": False, **summary.as_dict()},
            actor,
        )
        return summary

    def restore(self, category_id: int, actor: Optional[ActorContext] = None) -> Category:
        category = self.store.find_by_id(category_id)
        if category is None or category.visible:
            raise NotFound(f"No deleted category {category_id} to restore.", category_id=category_id)

        old_values = snapshot(category)
        slug = category.slug
        if self.store.slug_taken(slug, exclude_id=category_id):
            slug = self.store.next_available_slug(slugify(category.name), exclude_id=category_id)
        parent_id = category.parent_id
        if parent_id is not None and not self._parent_still_valid(category_id, parent_id):
            parent_id = None

        with self._transaction():
            self.store.update(category_id, slug=slug, parent_id=parent_id)
            self.store.set_visible(category_id, True)

        logger.info("category_restored", extra={"category_id": category_id, "slug": slug})
        self.audit.record(AuditAction.RESTORE, TABLE_NAME, category_id, old_values, snapshot(category), actor)
        return category

    # Checks ----------------------------------------------------------------

    def _check_parent(self, category_id: int, parent_id: Optional[int]) -> None:
        """Reject a parent that would close a loop, then require it to be visible."""
        if parent_id is None:
            return
        if parent_id == category_id:
            self._reject_cycle(category_id, parent_id)

        parent_map = self.store.parent_map()
        try:
            ancestor_chain(parent_map, parent_id, seen={category_id})
            descendants = descendant_ids(parent_map, category_id)
        except CycleDetected:
            self._reject_cycle(category_id, parent_id)
        if parent_id in descendants:
            self._reject_cycle(category_id, parent_id)

        self._require_visible_parent(parent_id)

    def _reject_cycle(self, category_id: int, parent_id: int) -> None:
        self.db.rollback()
        logger.warning("category_cycle_rejected", extra={"category_id": category_id, "parent_id": parent_id})
        raise CircularReference(
            f"Category {parent_id} cannot become the parent of {category_id}.",
            category_id=category_id,
            parent_id=parent_id,
        )

    def _require_visible_parent(self, parent_id: int) -> Category:
        parent = self.store.find_by_id(parent_id, only_visible=True)
        if parent is None:
            self.db.rollback()
            raise InvalidParent(f"Parent category {parent_id} does not exist.", parent_id=parent_id)
        return parent

    def _require_move_target(self, category_id: int, target_id: int) -> None:
        target = self.store.find_by_id(target_id, only_visible=True)
        invalid = target is None or target_id == category_id
        if not invalid:
            try:
                invalid = target_id in descendant_ids(self.store.parent_map(), category_id)
            except CycleDetected:
                invalid = True
        if invalid:
            self.db.rollback()
            raise InvalidTarget(
                f"Category {target_id} cannot receive the contents of {category_id}.",
                category_id=category_id,
                target_id=target_id,
            )

    def _parent_still_valid(self, category_id: int, parent_id: int) -> bool:
        if self.store.find_by_id(parent_id, only_visible=True) is None:
            return False
        try:
            ancestor_chain(self.store.parent_map(), parent_id, seen={category_id})
        except CycleDetected:
            return False
        return True

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.db.commit()
        except (IntegrityError, StaleDataError) as exc:
            self.db.rollback()
            logger.warning("category_write_conflict", extra={"error": str(exc)})
            raise Conflict("The category was changed concurrently; retry the operation.") from exc
        except Exception:
            self.db.rollback()
            raise
