"""PostgreSQL-backed AI settings singleton.

The ``ai_settings`` table holds exactly one row (``id = 'default'``) with the
operator-editable AI configuration.  Unlike the process configuration in
:mod:`helpdesk_ai.config`, this row can change at any time, so it is **not**
cached: every call to :meth:`AISettingsStore.get` goes to the database.

Typical lifecycle::

    pool  = await asyncpg.create_pool(dsn)
    store = AISettingsStore(pool)
    await store.ensure_schema()

    settings = await store.get()          # creates the row on first use
    await store.update({"is_enabled": True, "anthropic_api_key": "sk-..."})
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator

from helpdesk_ai.agent.providers import Provider, parse_provider, task_key
from helpdesk_ai.config import get_settings
from helpdesk_ai.logging import get_logger

if TYPE_CHECKING:
    import asyncpg  # type: ignore[import-not-found,import-untyped]

log = get_logger("helpdesk_ai.settings_manager")

SETTINGS_ROW_ID = "default"
MASKED_KEY = "••••••••"
_MASK_MARKER = "••••"

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ai_settings (
    id                  TEXT PRIMARY KEY,
    is_enabled          BOOLEAN NOT NULL DEFAULT FALSE,
    active_provider     TEXT NOT NULL DEFAULT 'anthropic',
    anthropic_enabled   BOOLEAN NOT NULL DEFAULT TRUE,
    anthropic_api_key   TEXT,
    anthropic_model     TEXT,
    openai_enabled      BOOLEAN NOT NULL DEFAULT TRUE,
    openai_api_key      TEXT,
    openai_model        TEXT,
    openrouter_enabled  BOOLEAN NOT NULL DEFAULT TRUE,
    openrouter_api_key  TEXT,
    openrouter_model    TEXT,
    task_overrides      JSONB NOT NULL DEFAULT '{}'::jsonb,
    use_fallback        BOOLEAN NOT NULL DEFAULT TRUE,
    fallback_order      TEXT NOT NULL DEFAULT 'openai,openrouter',
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class TaskOverride(BaseModel):
    """Provider/model override for one task type."""

    provider: Provider | None = None
    model: str | None = None

    @field_validator("provider", mode="before")
    @classmethod
    def _blank_provider(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("model", mode="before")
    @classmethod
    def _blank_model(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class AISettings(BaseModel):
    """The AI settings singleton record."""

    is_enabled: bool = False
    active_provider: Provider = Provider.ANTHROPIC

    anthropic_enabled: bool = True
    anthropic_api_key: str | None = None
    anthropic_model: str | None = None

    openai_enabled: bool = True
    openai_api_key: str | None = None
    openai_model: str | None = None

    openrouter_enabled: bool = True
    openrouter_api_key: str | None = None
    openrouter_model: str | None = None

    task_overrides: dict[str, TaskOverride] = Field(default_factory=dict)

    use_fallback: bool = True
    fallback_order: str = "openai,openrouter"

    @field_validator("task_overrides", mode="before")
    @classmethod
    def _normalize_task_keys(cls, v: Any) -> Any:
        # Keys must match what task_key() produces for requests
        if isinstance(v, dict):
            return {task_key(k): override for k, override in v.items()}
        return v

    def is_provider_enabled(self, provider: Provider) -> bool:
        """Check the per-provider enable flag."""
        return bool(getattr(self, f"{provider.value}_enabled"))

    def stored_api_key(self, provider: Provider) -> str | None:
        """API key stored in the settings row, if any."""
        return getattr(self, f"{provider.value}_api_key") or None

    def configured_model(self, provider: Provider) -> str | None:
        """Model stored in the settings row, if any."""
        return getattr(self, f"{provider.value}_model") or None

    def masked(self) -> dict[str, Any]:
        """Return a display-safe dump with API keys masked.

        Adds ``has_<provider>_env`` flags so an admin screen can tell whether
        an environment-level key would be used when the stored key is unset.
        """
        env = get_settings()
        data = self.model_dump(mode="json")
        for provider in Provider:
            field = f"{provider.value}_api_key"
            data[field] = MASKED_KEY if data.get(field) else None
            data[f"has_{provider.value}_env"] = env.env_api_key(provider.value) is not None
        return data


_UPDATABLE_FIELDS: frozenset[str] = frozenset(AISettings.model_fields)
_API_KEY_FIELDS: frozenset[str] = frozenset(f"{p.value}_api_key" for p in Provider)


def _row_to_settings(row: Any) -> AISettings:
    """Convert an ``ai_settings`` row into :class:`AISettings`."""
    data = {name: row[name] for name in AISettings.model_fields}
    overrides = data.get("task_overrides")
    if isinstance(overrides, str):
        data["task_overrides"] = json.loads(overrides)
    elif overrides is None:
        data["task_overrides"] = {}
    if parse_provider(data.get("active_provider")) is None:
        log.warning("ai_settings.unknown_active_provider", value=data.get("active_provider"))
        data["active_provider"] = Provider.ANTHROPIC
    return AISettings.model_validate(data)


def _normalize_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Apply the admin-surface rules to a partial update.

    * unknown fields are rejected
    * masked API keys are ignored, empty API keys clear the stored key
    """
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown AI settings fields: {sorted(unknown)}")

    normalized: dict[str, Any] = {}
    for field, value in changes.items():
        if field in _API_KEY_FIELDS:
            if value == "" or value is None:
                normalized[field] = None
            elif _MASK_MARKER in value:
                continue
            else:
                normalized[field] = value
        else:
            normalized[field] = value
    return normalized


class AISettingsStore:
    """Reads and writes the ``ai_settings`` singleton row."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        """Create the ``ai_settings`` table if it does not exist."""
        async with self._pool.acquire() as conn:
            await conn.execute(_SCHEMA_SQL)
        log.info("ai_settings.schema_ready")

    async def get(self) -> AISettings:
        """Fetch the singleton, creating it with defaults if missing."""
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM ai_settings WHERE id = $1", SETTINGS_ROW_ID
                )
                if row is None:
                    # Concurrent first reads may race; DO NOTHING keeps one row.
                    await conn.execute(
                        "INSERT INTO ai_settings (id) VALUES ($1) ON CONFLICT (id) DO NOTHING",
                        SETTINGS_ROW_ID,
                    )
                    row = await conn.fetchrow(
                        "SELECT * FROM ai_settings WHERE id = $1", SETTINGS_ROW_ID
                    )
                    log.info("ai_settings.created_defaults")
        except Exception:
            log.exception("ai_settings.get_failed")
            raise

        if row is None:
            return AISettings()
        return _row_to_settings(row)

    async def update(self, changes: dict[str, Any]) -> AISettings:
        """Apply a partial update (UPSERT) and return the stored settings."""
        normalized = _normalize_changes(changes)
        if not normalized:
            return await self.get()

        # Validate against the model before touching the database
        merged = (await self.get()).model_dump()
        merged.update(normalized)
        validated = AISettings.model_validate(merged)

        columns = list(normalized)
        values: list[Any] = []
        for column in columns:
            value = getattr(validated, column)
            if column == "task_overrides":
                value = json.dumps(
                    {k: v.model_dump(mode="json") for k, v in validated.task_overrides.items()}
                )
            elif isinstance(value, Provider):
                value = value.value
            values.append(value)

        placeholders = ", ".join(f"${i + 2}" for i in range(len(columns)))
        assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns)
        query = (
            f"INSERT INTO ai_settings (id, {', '.join(columns)}) "  # nosec B608 - fixed column set
            f"VALUES ($1, {placeholders}) "
            f"ON CONFLICT (id) DO UPDATE SET {assignments}, updated_at = NOW()"
        )

        try:
            async with self._pool.acquire() as conn:
                await conn.execute(query, SETTINGS_ROW_ID, *values)
        except Exception:
            log.exception("ai_settings.update_failed", fields=columns)
            raise

        log.info("ai_settings.updated", fields=columns)
        return validated
