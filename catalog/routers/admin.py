import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from catalog.core.config import get_settings
from catalog.core.errors import NotFound
from catalog.core.security import (
    ADMIN_SESSION_KEY,
    get_admin_from_session,
    require_admin,
    verify_password,
)
from catalog.db.models import AdminUser, AuditLogEntry, Category, Product, product_categories
from catalog.db.session import get_audit_log, get_db
from catalog.services.audit import ActorContext, AuditAction, AuditLog
from catalog.services.categories import (
    CategoryLifecycleService,
    CreateCategoryInput,
    DeleteCategoryInput,
    SetParentInput,
    UpdateCategoryInput,
)
from catalog.services.category_store import CategoryStore
from catalog.services.product_links import ProductCategoryLinker
from catalog.services.tree import CycleDetected, descendant_ids, ordered_tree

router = APIRouter(prefix="/admin", tags=["Admin"])

logger = logging.getLogger("catalog.admin")
settings = get_settings()


class LoginPayload(BaseModel):
    user_name: str
    password: str


class ProductCategoriesPayload(BaseModel):
    category_ids: List[int] = []


def get_category_service(
    db: Session = Depends(get_db),
    audit: AuditLog = Depends(get_audit_log),
) -> CategoryLifecycleService:
    return CategoryLifecycleService(db, audit)


def _client_identifier(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _actor(request: Request, admin: Optional[AdminUser]) -> ActorContext:
    return ActorContext(
        label=admin.user_name if admin else None,
        ip_address=_client_identifier(request),
        client_info=request.headers.get("user-agent"),
    )


def _serialize_category(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "image": category.image,
        "parent_id": category.parent_id,
        "visible": category.visible,
        "version": category.version,
        "created_at": category.created_at,
        "updated_at": category.updated_at,
    }


def _serialize_log(entry: AuditLogEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "action": entry.action,
        "table_name": entry.table_name,
        "record_id": entry.record_id,
        "old_values": entry.old_values,
        "new_values": entry.new_values,
        "actor": entry.actor,
        "ip_address": entry.ip_address,
        "client_info": entry.client_info,
        "created_at": entry.created_at,
    }


def _product_counts(db: Session) -> Dict[int, int]:
    rows = db.execute(
        select(product_categories.c.category_id, func.count(Product.id))
        .join(Product, Product.id == product_categories.c.product_id)
        .where(Product.visible.is_(True))
        .group_by(product_categories.c.category_id)
    ).all()
    return {category_id: count for category_id, count in rows}


def _category_tree_with_stats(db: Session) -> List[Dict[str, Any]]:
    categories = CategoryStore(db).list_categories()
    product_counts = _product_counts(db)
    child_counts: Dict[int, int] = {}
    for category in categories:
        if category.parent_id is not None:
            child_counts[category.parent_id] = child_counts.get(category.parent_id, 0) + 1

    nodes = [
        {
            "id": category.id,
            "name": category.name,
            "slug": category.slug,
            "parent_id": category.parent_id,
            "product_count": product_counts.get(category.id, 0),
            "child_count": child_counts.get(category.id, 0),
        }
        for category in categories
    ]
    return ordered_tree(nodes)


@router.post("/login")
def login(
    payload: LoginPayload,
    request: Request,
    db: Session = Depends(get_db),
    audit: AuditLog = Depends(get_audit_log),
):
    user_name = payload.user_name.strip()
    admin = db.scalars(select(AdminUser).where(AdminUser.user_name == user_name)).first()
    if not admin or not admin.is_active or not verify_password(payload.password, admin.password_hash):
        logger.warning(
            "admin_login_failed",
            extra={"user_name": user_name, "client": _client_identifier(request)},
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")

    request.session[ADMIN_SESSION_KEY] = admin.id
    audit.record(AuditAction.LOGIN, "admin_users", admin.id, actor=_actor(request, admin))
    logger.info("admin_logged_in", extra={"admin_id": admin.id})
    return {"id": admin.id, "user_name": admin.user_name, "full_name": admin.full_name}


@router.post("/logout")
def logout(
    request: Request,
    db: Session = Depends(get_db),
    audit: AuditLog = Depends(get_audit_log),
):
    admin = get_admin_from_session(request, db)
    request.session.pop(ADMIN_SESSION_KEY, None)
    if admin:
        audit.record(AuditAction.LOGOUT, "admin_users", admin.id, actor=_actor(request, admin))
        logger.info("admin_logged_out", extra={"admin_id": admin.id})
    return {"status": "ok"}


@router.get("/categories")
def manage_categories(
    q: str = Query("", alias="q"),
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(require_admin),
):
    categories = _category_tree_with_stats(db)
    trimmed = q.strip()
    if trimmed:
        lowered = trimmed.lower()
        categories = [
            category
            for category in categories
            if lowered in category["name"].lower() or lowered in category["slug"].lower()
        ]
    return {"categories": categories, "search_term": trimmed}


@router.get("/categories/{category_id}")
def category_detail(
    category_id: int,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(require_admin),
):
    store = CategoryStore(db)
    category = store.find_by_id(category_id)
    if category is None:
        raise NotFound(f"Category {category_id} not found.", category_id=category_id)

    data = _serialize_category(category)
    data["product_count"] = len(ProductCategoryLinker(db).products_in(category_id))
    data["child_count"] = len(store.list_children(category_id))

    # Categories that may receive this one's products and children on delete.
    move_targets: List[Dict[str, Any]] = []
    if category.visible:
        try:
            excluded = descendant_ids(store.parent_map(), category_id) | {category_id}
        except CycleDetected:
            excluded = {category_id}
        move_targets = [
            {"id": other.id, "name": other.name}
            for other in store.list_categories()
            if other.id not in excluded
        ]
    data["move_targets"] = move_targets
    return data


@router.post("/categories", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CreateCategoryInput,
    request: Request,
    service: CategoryLifecycleService = Depends(get_category_service),
    admin: AdminUser = Depends(require_admin),
):
    category = service.create(payload, _actor(request, admin))
    return _serialize_category(category)


@router.put("/categories/{category_id}")
def update_category(
    category_id: int,
    payload: UpdateCategoryInput,
    request: Request,
    service: CategoryLifecycleService = Depends(get_category_service),
    admin: AdminUser = Depends(require_admin),
):
    category = service.update(category_id, payload, _actor(request, admin))
    return _serialize_category(category)


@router.post("/categories/{category_id}/parent")
def set_category_parent(
    category_id: int,
    payload: SetParentInput,
    request: Request,
    service: CategoryLifecycleService = Depends(get_category_service),
    admin: AdminUser = Depends(require_admin),
):
    category = service.set_parent(category_id, payload, _actor(request, admin))
    return _serialize_category(category)


@router.post("/categories/{category_id}/delete")
def delete_category(
    category_id: int,
    request: Request,
    payload: Optional[DeleteCategoryInput] = None,
    service: CategoryLifecycleService = Depends(get_category_service),
    admin: AdminUser = Depends(require_admin),
):
    summary = service.delete(category_id, payload, _actor(request, admin))
    return summary.as_dict()


@router.post("/categories/{category_id}/restore")
def restore_category(
    category_id: int,
    request: Request,
    service: CategoryLifecycleService = Depends(get_category_service),
    admin: AdminUser = Depends(require_admin),
):
    category = service.restore(category_id, _actor(request, admin))
    return _serialize_category(category)


@router.put("/products/{product_id}/categories")
def set_product_categories(
    product_id: int,
    payload: ProductCategoriesPayload,
    request: Request,
    db: Session = Depends(get_db),
    audit: AuditLog = Depends(get_audit_log),
    admin: AdminUser = Depends(require_admin),
):
    linker = ProductCategoryLinker(db)
    old_ids = linker.category_ids_of(product_id)
    try:
        new_ids = linker.set_categories(product_id, payload.category_ids)
        db.commit()
    except Exception:
        db.rollback()
        raise

    audit.record(
        AuditAction.UPDATE,
        "products",
        product_id,
        {"category_ids": sorted(old_ids)},
        {"category_ids": sorted(new_ids)},
        _actor(request, admin),
    )
    logger.info(
        "product_categories_updated",
        extra={"product_id": product_id, "admin_id": admin.id, "category_ids": sorted(new_ids)},
    )
    return {"product_id": product_id, "category_ids": sorted(new_ids)}


@router.get("/logs")
def list_logs(
    action: Optional[AuditAction] = Query(None),
    table: Optional[str] = Query(None),
    record_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    audit: AuditLog = Depends(get_audit_log),
    admin: AdminUser = Depends(require_admin),
):
    result = audit.query(
        action=action.value if action else None,
        table_name=table or None,
        record_id=record_id,
        page=page,
        per_page=settings.admin_logs_page_size,
    )
    return {
        "logs": [_serialize_log(entry) for entry in result.items],
        "pagination": {
            "current_page": result.page,
            "total_pages": result.pages,
            "total_items": result.total,
            "has_next": result.has_next,
            "has_prev": result.has_prev,
        },
    }


@router.get("/logs/{entry_id}")
def show_log(
    entry_id: int,
    audit: AuditLog = Depends(get_audit_log),
    admin: AdminUser = Depends(require_admin),
):
    entry = audit.get(entry_id)
    if entry is None:
        raise NotFound(f"Log entry {entry_id} not found.", entry_id=entry_id)
    return _serialize_log(entry)


@router.post("/logs/clear")
def clear_logs(
    audit: AuditLog = Depends(get_audit_log),
    admin: AdminUser = Depends(require_admin),
):
    cutoff = datetime.now(timezone.utc) - timedelta(days=settings.audit_retention_days)
    removed = audit.purge_older_than(cutoff)
    logger.info("audit_log_cleared", extra={"admin_id": admin.id, "removed": removed})
    return {"removed": removed, "cutoff": cutoff}
