import logging
import math
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from catalog.core.config import get_settings
from catalog.core.text import render_rich_text
from catalog.db.models import Category, Product, product_categories
from catalog.db.session import get_db
from catalog.services.category_store import CategoryStore
from catalog.services.tree import CycleDetected, ancestor_chain, nest, ordered_tree

router = APIRouter(tags=["Site"])
logger = logging.getLogger("catalog.site")
settings = get_settings()

PRODUCT_SORTS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price-low": (Product.price.asc(), Product.id.asc()),
    "price-high": (Product.price.desc(), Product.id.desc()),
    "name": (Product.name.asc(), Product.id.asc()),
}


def _serialize_category(category: Category) -> Dict[str, Any]:
    return {"id": category.id, "name": category.name, "slug": category.slug, "image": category.image}


def _serialize_product(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "price": str(product.price) if product.price is not None else None,
        "featured": product.featured,
        "categories": [
            {"id": category.id, "name": category.name, "slug": category.slug}
            for category in product.categories
            if category.visible
        ],
        "created_at": product.created_at,
    }


def _breadcrumbs(store: CategoryStore, category: Category) -> List[Dict[str, Any]]:
    try:
        chain = ancestor_chain(store.parent_map(), category.id)
    except CycleDetected:
        logger.error("category_parent_loop", extra={"category_id": category.id})
        chain = [category.id]

    crumbs: List[Dict[str, Any]] = []
    for category_id in reversed(chain):
        node = store.find_by_id(category_id, only_visible=True)
        if node is not None:
            crumbs.append({"name": node.name, "slug": node.slug})
    return crumbs


def _category_page(db: Session, category: Category, page: int, sort: str) -> Dict[str, Any]:
    store = CategoryStore(db)
    per_page = settings.site_page_size
    base = (
        select(Product)
        .join(product_categories, product_categories.c.product_id == Product.id)
        .where(product_categories.c.category_id == category.id, Product.visible.is_(True))
    )
    total = db.scalar(select(func.count()).select_from(base.subquery())) or 0
    products = (
        db.scalars(
            base.options(selectinload(Product.categories))
            .order_by(*PRODUCT_SORTS[sort])
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        .unique()
        .all()
    )
    total_pages = max(1, math.ceil(total / per_page))

    return {
        "category": {
            **_serialize_category(category),
            "description_html": str(render_rich_text(category.description or "")),
        },
        "breadcrumbs": _breadcrumbs(store, category),
        "children": [_serialize_category(child) for child in store.list_children(category.id)],
        "products": [_serialize_product(product) for product in products],
        "sort": sort,
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_items": total,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    nodes = [
        {**_serialize_category(category), "parent_id": category.parent_id}
        for category in CategoryStore(db).list_categories()
    ]
    return {"categories": nest(ordered_tree(nodes))}


@router.get("/categories/{slug}")
def category_detail(
    slug: str,
    page: int = Query(1, ge=1),
    sort: str = Query("newest"),
    db: Session = Depends(get_db),
):
    category = CategoryStore(db).find_by_slug(slug)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if sort not in PRODUCT_SORTS:
        sort = "newest"
    return _category_page(db, category, page, sort)


@router.get("/categories/{parent_slug}/{slug}")
def subcategory_detail(
    parent_slug: str,
    slug: str,
    page: int = Query(1, ge=1),
    sort: str = Query("newest"),
    db: Session = Depends(get_db),
):
    store = CategoryStore(db)
    category = store.find_by_slug(slug)
    parent = store.find_by_slug(parent_slug)
    if not category or not parent or category.parent_id != parent.id:
        raise HTTPException(status_code=404, detail="Category not found")
    if sort not in PRODUCT_SORTS:
        sort = "newest"
    return _category_page(db, category, page, sort)
