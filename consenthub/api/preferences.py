"""Communication preference endpoints.

Routes:
  GET    /api/v1/preferences/categories                      - List categories with items
  POST   /api/v1/preferences/categories                      - Create category (admin)
  GET    /api/v1/preferences/categories/{id}                 - Fetch category with items
  PUT    /api/v1/preferences/categories/{id}                 - Update category (admin)
  DELETE /api/v1/preferences/categories/{id}                 - Delete empty category (admin)
  POST   /api/v1/preferences/categories/{id}/items           - Create item (admin)
  PUT    /api/v1/preferences/categories/{id}/items/{item_id} - Update item (admin)
  DELETE /api/v1/preferences/categories/{id}/items/{item_id} - Delete item (admin)
  GET    /api/v1/preferences/me                              - Caller's values
  PUT    /api/v1/preferences/me                              - Set caller's values
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.api.schemas import (
    CategoryCreateRequest,
    CategoryUpdateRequest,
    ItemCreateRequest,
    ItemUpdateRequest,
    PreferenceValuesRequest,
    envelope,
)
from consenthub.auth.dependencies import AuthenticatedUser, get_current_user
from consenthub.core.errors import ValidationError
from consenthub.core.policy import Permission, check_permission
from consenthub.database import get_db_session
from consenthub.services.preference import PreferenceService
from consenthub.services.resources import category_resource, item_resource

router = APIRouter(prefix="/preferences", tags=["preferences"])


# ------------------------------------------------------------------ #
# Taxonomy
# ------------------------------------------------------------------ #


@router.get("/categories")
async def list_categories(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_READ)
    svc = PreferenceService(db)
    categories = await svc.list_categories()
    return envelope(
        [category_resource(c, await svc.list_items(c.id)) for c in categories]
    )


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    body: CategoryCreateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_MANAGE)
    category = await PreferenceService(db).create_category(
        name=body.name,
        description=body.description,
        enabled=body.enabled,
        priority=body.priority,
    )
    return envelope(category_resource(category, []), "Category created")


@router.get("/categories/{category_id}")
async def get_category(
    category_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_READ)
    svc = PreferenceService(db)
    category = await svc.get_category(category_id)
    return envelope(category_resource(category, await svc.list_items(category.id)))


@router.put("/categories/{category_id}")
async def update_category(
    category_id: uuid.UUID,
    body: CategoryUpdateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_MANAGE)
    category = await PreferenceService(db).update_category(
        category_id, body.model_dump(exclude_unset=True)
    )
    return envelope(category_resource(category))


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_MANAGE)
    await PreferenceService(db).delete_category(category_id)
    return envelope(None, "Category deleted")


@router.post("/categories/{category_id}/items", status_code=status.HTTP_201_CREATED)
async def create_item(
    category_id: uuid.UUID,
    body: ItemCreateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_MANAGE)
    item = await PreferenceService(db).create_item(
        category_id,
        key=body.key,
        name=body.name,
        value_type=body.type,
        description=body.description,
        default_value=body.default_value,
        options=body.options,
        enabled=body.enabled,
    )
    return envelope(item_resource(item), "Preference item created")


@router.put("/categories/{category_id}/items/{item_id}")
async def update_item(
    category_id: uuid.UUID,
    item_id: uuid.UUID,
    body: ItemUpdateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_MANAGE)
    item = await PreferenceService(db).update_item(category_id, item_id, body.changes())
    return envelope(item_resource(item))


@router.delete("/categories/{category_id}/items/{item_id}")
async def delete_item(
    category_id: uuid.UUID,
    item_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_MANAGE)
    await PreferenceService(db).delete_item(category_id, item_id)
    return envelope(None, "Preference item deleted")


# ------------------------------------------------------------------ #
# Caller's own values
# ------------------------------------------------------------------ #


@router.get("/me")
async def my_preferences(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_READ)
    return envelope(await PreferenceService(db).get_user_preferences(current_user.id))


@router.put("/me")
async def set_my_preferences(
    body: PreferenceValuesRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PREFERENCE_READ)
    try:
        values = {uuid.UUID(item_id): value for item_id, value in body.preferences.items()}
    except ValueError:
        raise ValidationError("preferences must be keyed by item id") from None

    svc = PreferenceService(db)
    await svc.set_user_preferences(current_user.id, values)
    return envelope(await svc.get_user_preferences(current_user.id), "Preferences saved")
