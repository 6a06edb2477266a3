"""Conversion between API objects and cache rows.

:func:`encode` builds a row model from one API object: the JSON
``snapshot`` and every structured column are derived from that same
object in one call, so the two cannot disagree. :func:`decode` rebuilds
the API object from the snapshot alone; structured columns exist only for
filtering and are never read back into the object handed to callers.

API models allow extra fields and the snapshot is a full dump of the
object as it is at encode time, nested changes included, so a decoded
object equals the one that was encoded, fields the models do not declare
included.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

from clack.exceptions import DecodeError, EncodeError
from clack.models import (
    CachedConversation,
    CachedMessage,
    CachedUser,
    Conversation,
    Message,
    ObjectKind,
    User,
)

API_MODELS: dict[ObjectKind, type[BaseModel]] = {
    ObjectKind.USER: User,
    ObjectKind.CONVERSATION: Conversation,
    ObjectKind.MESSAGE: Message,
}

CachedRow = Union[CachedUser, CachedConversation, CachedMessage]


def fold(value: Optional[str]) -> Optional[str]:
    """Case-fold a name for case-insensitive exact matching."""
    if not value:
        return None
    return value.casefold()


def coerce(kind: ObjectKind, obj: Any) -> BaseModel:
    """Return *obj* as the API model of *kind*, validating plain dicts.

    Raises:
        EncodeError: If *obj* is neither the right model nor a valid dict.
    """
    model = API_MODELS[kind]
    if isinstance(obj, model):
        return obj
    if isinstance(obj, dict):
        try:
            return model.model_validate(obj)
        except ValidationError as exc:
            raise EncodeError(f"Invalid {kind.value} object: {exc}") from exc
    raise EncodeError(f"Cannot cache {type(obj).__name__} as {kind.value}")


def _snapshot(obj: BaseModel) -> str:
    try:
        return obj.model_dump_json(by_alias=True)
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise EncodeError(f"Cannot serialise {type(obj).__name__}: {exc}") from exc


def encode_user(user: User, workspace_id: str, cached_at: float) -> CachedUser:
    profile = user.profile
    real_name = user.real_name or profile.real_name
    return CachedUser(
        id=user.id,
        workspace_id=workspace_id,
        name=user.name,
        real_name=real_name,
        deleted=user.deleted,
        is_bot=user.is_bot,
        is_admin=user.is_admin,
        is_owner=user.is_owner,
        tz=user.tz,
        profile_email=profile.email,
        profile_display_name=profile.display_name,
        profile_status_emoji=profile.status_emoji,
        profile_status_text=profile.status_text,
        profile_image_72=profile.image_72,
        name_folded=fold(user.name) or "",
        display_name_folded=fold(profile.display_name),
        real_name_folded=fold(real_name),
        snapshot=_snapshot(user),
        cached_at=cached_at,
    )


def encode_conversation(
    conversation: Conversation, workspace_id: str, cached_at: float
) -> CachedConversation:
    return CachedConversation(
        id=conversation.id,
        workspace_id=workspace_id,
        name=conversation.name,
        name_folded=fold(conversation.name) or "",
        is_channel=conversation.is_channel,
        is_group=conversation.is_group,
        is_im=conversation.is_im,
        is_mpim=conversation.is_mpim,
        is_private=conversation.is_private,
        is_archived=bool(conversation.is_archived),
        topic_value=conversation.topic.value if conversation.topic else None,
        purpose_value=conversation.purpose.value if conversation.purpose else None,
        num_members=conversation.num_members,
        snapshot=_snapshot(conversation),
        cached_at=cached_at,
    )


def encode_message(
    message: Message,
    workspace_id: str,
    cached_at: float,
    conversation_id: Optional[str] = None,
) -> CachedMessage:
    """Encode a message row.

    *conversation_id* defaults to the ``channel.id`` embedded in search
    results; a message with neither cannot be keyed and is rejected.
    """
    conversation_id = conversation_id or (message.channel.id if message.channel else None)
    if not conversation_id:
        raise EncodeError(f"Message {message.ts} has no conversation id")
    return CachedMessage(
        conversation_id=conversation_id,
        workspace_id=workspace_id,
        ts=message.ts,
        user_id=message.user,
        text=message.text,
        thread_ts=message.thread_ts,
        permalink=message.permalink,
        snapshot=_snapshot(message),
        cached_at=cached_at,
    )


def encode(
    kind: ObjectKind,
    obj: Any,
    workspace_id: str,
    cached_at: float,
    conversation_id: Optional[str] = None,
) -> CachedRow:
    """Encode *obj* (a model or a dict) as the row model of *kind*.

    Raises:
        EncodeError: If the object is invalid or cannot be serialised.
    """
    model = coerce(kind, obj)
    try:
        if kind is ObjectKind.USER:
            return encode_user(model, workspace_id, cached_at)  # type: ignore[arg-type]
        if kind is ObjectKind.CONVERSATION:
            return encode_conversation(model, workspace_id, cached_at)  # type: ignore[arg-type]
        return encode_message(model, workspace_id, cached_at, conversation_id)  # type: ignore[arg-type]
    except ValidationError as exc:
        raise EncodeError(f"Invalid {kind.value} row: {exc}") from exc


def decode(kind: ObjectKind, snapshot: str) -> Any:
    """Rebuild the API object of *kind* from its stored snapshot.

    Raises:
        DecodeError: If the snapshot is not valid JSON for the model.
    """
    try:
        return API_MODELS[kind].model_validate_json(snapshot)
    except (ValidationError, ValueError) as exc:
        raise DecodeError(f"Corrupt cached {kind.value}: {exc}") from exc
