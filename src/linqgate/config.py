"""Linq channel configuration and account resolution.

The host passes its whole config mapping; the Linq section lives at
cfg["channels"]["linq"]. Keys are camelCase on the wire (the host's
format) and snake_case in Python.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_ACCOUNT_ID = "default"
DEFAULT_WEBHOOK_PATH = "/__linq__/webhook"
DEFAULT_PREFERRED_SERVICE = "iMessage"

TOKEN_ENV_VAR = "LINQ_API_TOKEN"

_E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")

TokenSource = Literal["config", "file", "env", "none"]


class LinqConfigError(RuntimeError):
    """Account is missing a setting required for the requested operation."""

    pass


class LinqConfig(BaseModel):
    """channels.linq section (also the shape of each accounts.<id> entry)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    enabled: bool = False
    api_token: str | None = None
    token_file: str | None = None
    from_number: str | None = None
    webhook_secret: str | None = None
    webhook_path: str = DEFAULT_WEBHOOK_PATH
    preferred_service: Literal["iMessage", "RCS", "SMS"] = DEFAULT_PREFERRED_SERVICE
    dm_policy: Literal["open", "pairing", "allowlist"] | None = None
    group_policy: Literal["open", "allowlist"] | None = None
    allow_from: list[str] | None = None
    group_allow_from: list[str] | None = None
    name: str | None = None
    accounts: dict[str, dict[str, Any]] | None = None

    @field_validator("from_number")
    @classmethod
    def from_number_is_e164(cls, v: str | None) -> str | None:
        """Validate from_number is E.164 if provided."""
        if v is not None and not _E164_PATTERN.match(v):
            raise ValueError("fromNumber must be an E.164 phone number")
        return v

    @field_validator("webhook_path")
    @classmethod
    def webhook_path_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("webhookPath must start with /")
        return v


@dataclass(frozen=True)
class ResolvedAccount:
    """A Linq account with its effective settings and token."""

    account_id: str
    enabled: bool
    name: str | None
    api_token: str
    token_source: TokenSource
    from_number: str
    config: LinqConfig

    @property
    def configured(self) -> bool:
        return bool(self.api_token.strip() and self.from_number.strip())

    @property
    def preferred_service(self) -> str:
        return self.config.preferred_service or DEFAULT_PREFERRED_SERVICE


def normalize_account_id(account_id: str | None) -> str:
    normalized = (account_id or "").strip().lower()
    return normalized or DEFAULT_ACCOUNT_ID


def linq_section(cfg: dict[str, Any] | None) -> dict[str, Any]:
    """Raw channels.linq mapping from the host config (empty if absent)."""
    channels = (cfg or {}).get("channels") or {}
    section = channels.get("linq") or {}
    return section if isinstance(section, dict) else {}


def _account_overrides(section: dict[str, Any], account_id: str) -> dict[str, Any] | None:
    accounts = section.get("accounts") or {}
    for key, value in accounts.items():
        if normalize_account_id(key) == account_id and isinstance(value, dict):
            return value
    return None


def _read_token_file(token_file: str) -> str:
    try:
        return Path(token_file).expanduser().read_text(encoding="utf-8").strip()
    except OSError:
        return ""


def _resolve_token(config: LinqConfig) -> tuple[str, TokenSource]:
    """Token precedence: config, token file, LINQ_API_TOKEN, none."""
    if config.api_token and config.api_token.strip():
        return config.api_token.strip(), "config"

    if config.token_file:
        token = _read_token_file(config.token_file)
        if token:
            return token, "file"

    env_token = os.environ.get(TOKEN_ENV_VAR, "").strip()
    if env_token:
        return env_token, "env"

    return "", "none"


def resolve_account(cfg: dict[str, Any] | None, account_id: str | None = None) -> ResolvedAccount:
    """Resolve the effective settings for one account.

    A non-default account merges its overrides over the base section. The
    account is enabled unless the base or the account sets enabled=false.

    Raises:
        pydantic.ValidationError: If the merged section is invalid.
    """
    section = linq_section(cfg)
    resolved_id = normalize_account_id(account_id)

    merged = dict(section)
    overrides: dict[str, Any] | None = None
    if resolved_id != DEFAULT_ACCOUNT_ID:
        overrides = _account_overrides(section, resolved_id)
        if overrides:
            merged.update(overrides)

    config = LinqConfig.model_validate(merged)
    token, source = _resolve_token(config)

    base_enabled = section.get("enabled") is not False
    account_enabled = (overrides or {}).get("enabled") is not False

    return ResolvedAccount(
        account_id=resolved_id,
        enabled=base_enabled and account_enabled,
        name=config.name.strip() if config.name else None,
        api_token=token,
        token_source=source,
        from_number=config.from_number or "",
        config=config,
    )


def list_account_ids(cfg: dict[str, Any] | None) -> list[str]:
    accounts = linq_section(cfg).get("accounts") or {}
    ids = {normalize_account_id(key) for key in accounts if key}
    if not ids:
        return [DEFAULT_ACCOUNT_ID]
    return sorted(ids)


def default_account_id(cfg: dict[str, Any] | None) -> str:
    return list_account_ids(cfg)[0]


def require_api_token(account: ResolvedAccount) -> str:
    if not account.api_token:
        raise LinqConfigError("Linq API token not configured")
    return account.api_token


def require_from_number(account: ResolvedAccount) -> str:
    if not account.from_number.strip():
        raise LinqConfigError("Linq fromNumber not configured")
    return account.from_number.strip()
