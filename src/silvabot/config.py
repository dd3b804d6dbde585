"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. The session token lives in .env.
Environment variables override both using ``__`` as the nested delimiter
(e.g. ``BOT__PREFIX=!`` or ``SESSION__SESSION_ID=Silva~...``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from silvabot.config import get_settings

    s = get_settings()
    print(s.bot.prefix)
"""

from __future__ import annotations

import json
from functools import cached_property
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models; rejects unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class BotConfig(_StrictModel):
    name: str = "Silva MD"
    prefix: str = "."
    mode: Literal["public", "private"] = "public"
    owner_numbers: Annotated[list[str], NoDecode] = []
    allowed_users: Annotated[list[str], NoDecode] = []
    plugins_dir: str | None = None  # None → bundled plugins shipped with the package
    max_plugins: int = 50
    command_timeout: float = 120.0  # seconds; 0 disables

    @field_validator("prefix")
    @classmethod
    def require_prefix(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("Command prefix cannot be empty")
        return v

    @field_validator("owner_numbers", "allowed_users", mode="before")
    @classmethod
    def split_csv(cls, v: object) -> object:
        # env values arrive as "254700...,254711..." or a JSON list
        if isinstance(v, str):
            if v.lstrip().startswith("["):
                return json.loads(v)
            return [part.strip() for part in v.split(",") if part.strip()]
        return v


class FeaturesConfig(_StrictModel):
    auto_read: bool = True
    auto_typing: bool = False
    auto_reply: bool = False
    auto_reply_message: str = "👋 Hi! Type .menu to see what I can do."
    presence_reset_delay: float = 3.0  # seconds


class AntiDeleteConfig(_StrictModel):
    enabled: bool = True
    group: bool = True
    private: bool = True
    notify_group: bool = True
    retention_seconds: float = 600.0  # 10 minutes
    max_entries: int = 1000


class StatusConfig(_StrictModel):
    auto_view: bool = True
    auto_react: bool = False
    react_emojis: list[str] = ["❤️", "🔥", "💯", "😍", "👏"]
    react_delay: float = 0.8  # seconds
    auto_reply: bool = False
    reply_message: str = "💖 Silva MD viewed your status"
    auto_save: bool = False
    max_tracked: int = 500


class NewsletterConfig(_StrictModel):
    follow: bool = True
    ids: list[str] = [
        "120363276154401733@newsletter",
        "120363200367779016@newsletter",
        "120363199904258143@newsletter",
        "120363422731708290@newsletter",
    ]
    delay_seconds: float = 2.0


class ConnectionConfig(_StrictModel):
    base_backoff_seconds: float = 2.0
    max_backoff_seconds: float = 120.0
    alert_after_attempts: int = 5
    group_metadata_ttl: float = 300.0  # seconds
    message_store_size: int = 500
    notify_owner_on_connect: bool = True

    @field_validator("base_backoff_seconds", "max_backoff_seconds")
    @classmethod
    def positive_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Backoff delays must be positive")
        return v


class SessionConfig(_StrictModel):
    session_id: SecretStr | None = None  # "<magic>~<base64 gzip payload>"
    magic: str = "Silva"
    store_dir: str = "store"


class PairingConfig(_StrictModel):
    phone_number: str | None = None  # request a pair code instead of a QR


class ContextConfig(_StrictModel):
    """Context attributes merged into every outbound message."""

    forwarding_score: int = 999
    is_forwarded: bool = True
    newsletter_jid: str | None = "120363200367779016@newsletter"
    newsletter_name: str = "◢◤ Silva Tech Nexus"
    server_message_id: int = 144


class MessagesConfig(_StrictModel):
    error: str = "❌ An error occurred. Please try again later."
    owner_only: str = "⚠️ This command is only for the bot owner."
    group_only: str = "⚠️ This command only works in groups."
    admin_only: str = "⚠️ This command requires admin privileges."
    bot_admin_only: str = "⚠️ I need to be a group admin to do that."
    connected: str = "✅ {name} connected (v{version}). Prefix: {prefix}"


class ServerConfig(_StrictModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000


class LoggingConfig(_StrictModel):
    level: str = "INFO"
    debug: bool = False

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()

    @property
    def effective_level(self) -> str:
        return "DEBUG" if self.debug else self.level


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    bot: BotConfig = BotConfig()
    features: FeaturesConfig = FeaturesConfig()
    anti_delete: AntiDeleteConfig = AntiDeleteConfig()
    status: StatusConfig = StatusConfig()
    newsletter: NewsletterConfig = NewsletterConfig()
    connection: ConnectionConfig = ConnectionConfig()
    session: SessionConfig = SessionConfig()
    pairing: PairingConfig = PairingConfig()
    context: ContextConfig = ContextConfig()
    messages: MessagesConfig = MessagesConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def store_dir(self) -> Path:
        p = Path(self.session.store_dir).expanduser()
        if not p.is_absolute():
            p = self.project_root / p
        return p.resolve()

    @cached_property
    def credentials_path(self) -> Path:
        """Auth database consumed by the transport."""
        return self.store_dir / "neonize.db"

    @cached_property
    def creds_sidecar_path(self) -> Path:
        """JSON file receiving credential-update deltas."""
        return self.store_dir / "creds.json"

    @cached_property
    def plugins_dir(self) -> Path:
        if self.bot.plugins_dir is None:
            return Path(__file__).parent / "bundled"
        p = Path(self.bot.plugins_dir).expanduser()
        if not p.is_absolute():
            p = self.project_root / p
        return p.resolve()


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton. Only the CLI entry point should call this."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
