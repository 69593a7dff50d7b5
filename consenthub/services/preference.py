"""PreferenceService: admin taxonomy (categories -> items) and user values.

Values are validated against the item's value_type before they are stored:

  boolean  -> bool
  string   -> str
  number   -> int or float (bool is rejected)
  enum     -> one of item.options
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.core.errors import InvalidStateError, NotFoundError, ValidationError
from consenthub.database import utcnow
from consenthub.models.preference import (
    PreferenceCategory,
    PreferenceItem,
    PreferenceValueType,
    UserPreference,
)

log = structlog.get_logger(__name__)

_CATEGORY_FIELDS = frozenset({"name", "description", "enabled", "priority"})
_ITEM_FIELDS = frozenset(
    {"key", "name", "description", "value_type", "default_value", "options", "enabled"}
)


def validate_value(value_type: str, value: Any, options: list[Any] | None = None) -> Any:
    """Return value unchanged if it fits value_type, else raise ValidationError."""
    try:
        kind = PreferenceValueType(value_type)
    except ValueError:
        raise ValidationError(f"Unknown preference type '{value_type}'") from None
    if value is None:
        return None

    if kind == PreferenceValueType.BOOLEAN:
        ok = isinstance(value, bool)
    elif kind == PreferenceValueType.STRING:
        ok = isinstance(value, str)
    elif kind == PreferenceValueType.NUMBER:
        ok = isinstance(value, int | float) and not isinstance(value, bool)
    else:
        ok = value in (options or [])

    if not ok:
        expected = f"one of {options}" if kind == PreferenceValueType.ENUM else kind.value
        raise ValidationError(f"Invalid value {value!r}: expected {expected}")
    return value


class PreferenceService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    # ------------------------------------------------------------------ #
    # Categories
    # ------------------------------------------------------------------ #

    async def list_categories(self, *, include_disabled: bool = True) -> list[PreferenceCategory]:
        stmt = select(PreferenceCategory)
        if not include_disabled:
            stmt = stmt.where(PreferenceCategory.enabled.is_(True))
        result = await self._db.execute(
            stmt.order_by(PreferenceCategory.priority.asc(), PreferenceCategory.name.asc())
        )
        return list(result.scalars().all())

    async def get_category(self, category_id: uuid.UUID) -> PreferenceCategory:
        category = await self._db.get(PreferenceCategory, category_id)
        if category is None:
            raise NotFoundError(f"Preference category {category_id} not found")
        return category

    async def create_category(
        self,
        *,
        name: str,
        description: str | None = None,
        enabled: bool = True,
        priority: int = 0,
    ) -> PreferenceCategory:
        if not name or not name.strip():
            raise ValidationError("name is required")
        await self._assert_category_name_free(name.strip())
        category = PreferenceCategory(
            name=name.strip(),
            description=description,
            enabled=enabled,
            priority=priority,
        )
        self._db.add(category)
        await self._db.flush()
        log.info("preference.category_created", category_id=str(category.id), name=category.name)
        return category

    async def update_category(self, category_id: uuid.UUID, changes: dict[str, Any]) -> PreferenceCategory:
        category = await self.get_category(category_id)
        unknown = set(changes) - _CATEGORY_FIELDS
        if unknown:
            raise ValidationError(f"Unknown category fields: {sorted(unknown)}")
        if "name" in changes and changes["name"] != category.name:
            if not changes["name"] or not str(changes["name"]).strip():
                raise ValidationError("name must not be empty")
            await self._assert_category_name_free(str(changes["name"]).strip())
            changes = {**changes, "name": str(changes["name"]).strip()}
        for field, value in changes.items():
            setattr(category, field, value)
        await self._db.flush()
        log.info("preference.category_updated", category_id=str(category.id), fields=sorted(changes))
        return category

    async def delete_category(self, category_id: uuid.UUID) -> None:
        """Delete an empty category; a category that still has items is refused."""
        category = await self.get_category(category_id)
        item_count = await self._db.scalar(
            select(func.count())
            .select_from(PreferenceItem)
            .where(PreferenceItem.category_id == category.id)
        )
        if item_count:
            raise InvalidStateError(
                f"Category '{category.name}' still has {item_count} item(s); remove them first"
            )
        await self._db.delete(category)
        await self._db.flush()
        log.info("preference.category_deleted", category_id=str(category_id))

    async def _assert_category_name_free(self, name: str) -> None:
        existing = await self._db.scalar(
            select(PreferenceCategory.id).where(PreferenceCategory.name == name)
        )
        if existing is not None:
            raise InvalidStateError(f"A preference category named '{name}' already exists")

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #

    async def list_items(self, category_id: uuid.UUID) -> list[PreferenceItem]:
        result = await self._db.execute(
            select(PreferenceItem)
            .where(PreferenceItem.category_id == category_id)
            .order_by(PreferenceItem.name.asc())
        )
        return list(result.scalars().all())

    async def get_item(self, category_id: uuid.UUID, item_id: uuid.UUID) -> PreferenceItem:
        item = await self._db.get(PreferenceItem, item_id)
        if item is None or item.category_id != category_id:
            raise NotFoundError(f"Preference item {item_id} not found")
        return item

    async def create_item(
        self,
        category_id: uuid.UUID,
        *,
        key: str,
        name: str,
        value_type: str = PreferenceValueType.BOOLEAN,
        description: str | None = None,
        default_value: Any = None,
        options: list[Any] | None = None,
        enabled: bool = True,
    ) -> PreferenceItem:
        await self.get_category(category_id)
        if not key or not name:
            raise ValidationError("key and name are required")
        if value_type == PreferenceValueType.ENUM and not options:
            raise ValidationError("enum preferences need at least one option")
        validate_value(value_type, default_value, options)
        existing = await self._db.scalar(
            select(PreferenceItem.id).where(
                PreferenceItem.category_id == category_id,
                PreferenceItem.key == key,
            )
        )
        if existing is not None:
            raise InvalidStateError(f"An item with key '{key}' already exists in this category")

        item = PreferenceItem(
            category_id=category_id,
            key=key,
            name=name,
            description=description,
            value_type=PreferenceValueType(value_type),
            default_value=default_value,
            options=list(options or []),
            enabled=enabled,
        )
        self._db.add(item)
        await self._db.flush()
        log.info("preference.item_created", item_id=str(item.id), key=key)
        return item

    async def update_item(
        self,
        category_id: uuid.UUID,
        item_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> PreferenceItem:
        item = await self.get_item(category_id, item_id)
        unknown = set(changes) - _ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown item fields: {sorted(unknown)}")
        value_type = changes.get("value_type", item.value_type)
        options = changes.get("options", item.options)
        default_value = changes.get("default_value", item.default_value)
        validate_value(value_type, default_value, options)
        for field, value in changes.items():
            setattr(item, field, value)
        await self._db.flush()
        log.info("preference.item_updated", item_id=str(item.id), fields=sorted(changes))
        return item

    async def delete_item(self, category_id: uuid.UUID, item_id: uuid.UUID) -> None:
        item = await self.get_item(category_id, item_id)
        await self._db.delete(item)
        await self._db.flush()
        log.info("preference.item_deleted", item_id=str(item_id))

    # ------------------------------------------------------------------ #
    # User values
    # ------------------------------------------------------------------ #

    async def get_user_preferences(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        """Every enabled item with the user's value, or the item default."""
        result = await self._db.execute(
            select(PreferenceItem, PreferenceCategory)
            .join(PreferenceCategory, PreferenceCategory.id == PreferenceItem.category_id)
            .where(PreferenceItem.enabled.is_(True), PreferenceCategory.enabled.is_(True))
            .order_by(PreferenceCategory.priority.asc(), PreferenceItem.name.asc())
        )
        rows = result.all()

        values_result = await self._db.execute(
            select(UserPreference).where(UserPreference.user_id == user_id)
        )
        values = {pref.item_id: pref for pref in values_result.scalars().all()}

        preferences: list[dict[str, Any]] = []
        for item, category in rows:
            stored = values.get(item.id)
            preferences.append(
                {
                    "itemId": str(item.id),
                    "key": item.key,
                    "name": item.name,
                    "category": category.name,
                    "type": item.value_type,
                    "value": stored.value if stored is not None else item.default_value,
                    "isDefault": stored is None,
                    "updatedAt": stored.updated_at.isoformat() if stored is not None else None,
                }
            )
        return preferences

    async def set_user_preferences(self, user_id: uuid.UUID, values: dict[uuid.UUID, Any]) -> None:
        """Upsert the given item values for user_id; all or nothing."""
        for item_id, value in values.items():
            item = await self._db.get(PreferenceItem, item_id)
            if item is None or not item.enabled:
                raise NotFoundError(f"Preference item {item_id} not found")
            validate_value(item.value_type, value, item.options)

            existing = await self._db.scalar(
                select(UserPreference).where(
                    UserPreference.user_id == user_id,
                    UserPreference.item_id == item_id,
                )
            )
            if existing is None:
                self._db.add(UserPreference(user_id=user_id, item_id=item_id, value=value))
            else:
                existing.value = value
                existing.updated_at = utcnow()
        await self._db.flush()
        log.info("preference.user_values_set", user_id=str(user_id), count=len(values))
