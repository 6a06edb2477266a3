"""Canonical Pydantic models shared across all clack modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`CacheConfig` and :class:`GlobalConfig`.

**API object models** -- the deserialised shapes returned by the remote chat
API: :class:`User`, :class:`UserProfile`, :class:`Conversation`,
:class:`ConversationText`, :class:`Message`, :class:`MessageChannel`, and
:class:`Reaction`. They use ``extra="allow"`` so that fields the API adds
later survive a trip through the cache untouched.

**Cached row models** -- one per table in the cache database:
    :class:`CachedUser`, :class:`CachedConversation`, and
    :class:`CachedMessage`. Rows are only ever built by
    :mod:`clack.cache.codec`; the ``snapshot`` column is authoritative and
    every other column is a projection of it.
"""

from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ObjectKind(str, enum.Enum):
    """The kinds of remote objects the cache stores, one table each."""

    USER = "user"
    CONVERSATION = "conversation"
    MESSAGE = "message"


# --- Configuration ---


class CacheConfig(BaseModel):
    """Local object cache settings stored in :class:`GlobalConfig`.

    TTLs are per object kind. Messages change quickly and are only cached
    when ``cache_messages`` is switched on.
    """

    enabled: bool = Field(default=True, description="Enable the local object cache")
    path: Optional[str] = Field(
        default=None, description="Cache database file (default: <cache dir>/cache.db)"
    )
    pool_size: int = Field(
        default=4, ge=1, le=9, description="Maximum open SQLite connections"
    )
    busy_timeout_ms: int = Field(
        default=5000, ge=0, description="SQLite busy timeout in milliseconds"
    )
    user_ttl_seconds: int = Field(default=3600, ge=0, description="User TTL in seconds")
    conversation_ttl_seconds: int = Field(
        default=1800, ge=0, description="Conversation TTL in seconds"
    )
    message_ttl_seconds: int = Field(
        default=300, ge=0, description="Message TTL in seconds"
    )
    cache_messages: bool = Field(
        default=False, description="Also cache conversation history"
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/clack/config.json``.

    Loaded and saved by :func:`~clack.config.load_global_config` and
    :func:`~clack.config.save_global_config`. See
    :func:`~clack.config.resolve_config` for the precedence chain.
    """

    default_workspace: Optional[str] = Field(
        default=None, description="Workspace id used when --workspace is not given"
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)


# --- API objects ---


class UserProfile(BaseModel):
    """The nested ``profile`` object of a :class:`User`."""

    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    display_name: Optional[str] = None
    real_name: Optional[str] = None
    status_emoji: Optional[str] = None
    status_text: Optional[str] = None
    image_72: Optional[str] = None


class User(BaseModel):
    """A workspace member as returned by ``users.info`` / ``users.list``.

    ``deleted`` is the remote deactivation flag. It is cached as a plain
    column and does not soft-delete the row.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    real_name: Optional[str] = None
    profile: UserProfile = Field(default_factory=UserProfile)
    deleted: bool = False
    is_bot: bool = False
    is_admin: Optional[bool] = None
    is_owner: Optional[bool] = None
    tz: Optional[str] = None


class ConversationText(BaseModel):
    """A conversation ``topic`` or ``purpose``."""

    model_config = ConfigDict(extra="allow")

    value: str = ""
    creator: Optional[str] = None
    last_set: Optional[int] = None


class Conversation(BaseModel):
    """A channel, private group, direct message, or multi-party direct message."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    is_channel: Optional[bool] = None
    is_group: Optional[bool] = None
    is_im: Optional[bool] = None
    is_mpim: Optional[bool] = None
    is_private: Optional[bool] = None
    is_archived: Optional[bool] = None
    topic: Optional[ConversationText] = None
    purpose: Optional[ConversationText] = None
    num_members: Optional[int] = None


class Reaction(BaseModel):
    """An emoji reaction attached to a :class:`Message`."""

    model_config = ConfigDict(extra="allow")

    name: str
    count: int = 0
    users: list[str] = Field(default_factory=list)


class MessageChannel(BaseModel):
    """Channel reference embedded in search results."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: Optional[str] = None


class Message(BaseModel):
    """A single message. ``ts`` is only unique within its conversation."""

    model_config = ConfigDict(extra="allow")

    ts: str
    user: Optional[str] = None
    text: str = ""
    thread_ts: Optional[str] = None
    permalink: Optional[str] = None
    reactions: Optional[list[Reaction]] = None
    channel: Optional[MessageChannel] = None


# --- Cached rows ---


class CachedUser(BaseModel):
    """Row of the ``users`` table, keyed by ``(id, workspace_id)``."""

    id: str
    workspace_id: str
    name: str
    real_name: Optional[str] = None
    deleted: bool = False
    is_bot: bool = False
    is_admin: Optional[bool] = None
    is_owner: Optional[bool] = None
    tz: Optional[str] = None
    profile_email: Optional[str] = None
    profile_display_name: Optional[str] = None
    profile_status_emoji: Optional[str] = None
    profile_status_text: Optional[str] = None
    profile_image_72: Optional[str] = None
    name_folded: str
    display_name_folded: Optional[str] = None
    real_name_folded: Optional[str] = None
    snapshot: str
    cached_at: float
    deleted_at: Optional[float] = None


class CachedConversation(BaseModel):
    """Row of the ``conversations`` table, keyed by ``(id, workspace_id)``."""

    id: str
    workspace_id: str
    name: str
    name_folded: str
    is_channel: Optional[bool] = None
    is_group: Optional[bool] = None
    is_im: Optional[bool] = None
    is_mpim: Optional[bool] = None
    is_private: Optional[bool] = None
    is_archived: bool = False
    topic_value: Optional[str] = None
    purpose_value: Optional[str] = None
    num_members: Optional[int] = None
    snapshot: str
    cached_at: float
    deleted_at: Optional[float] = None


class CachedMessage(BaseModel):
    """Row of the ``messages`` table, keyed by ``(conversation_id, workspace_id, ts)``."""

    conversation_id: str
    workspace_id: str
    ts: str
    user_id: Optional[str] = None
    text: str = ""
    thread_ts: Optional[str] = None
    permalink: Optional[str] = None
    snapshot: str
    cached_at: float
    deleted_at: Optional[float] = None
