"""Owner / allow-list evaluation.

Everything here is pure: no I/O, no caching, same answer for the same
inputs. The dispatcher recomputes a decision for every command.

Sender identifiers show up in several shapes depending on the device and
the chat type::

    254700143167
    254700143167@s.whatsapp.net
    254700143167:12@s.whatsapp.net
    81712071631074@lid

All of them are reduced to their digit string before comparison.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from silvabot.types import BotIdentity, GroupMetadata, is_group_jid


def normalize_id(raw: str | None) -> str:
    """Reduce any sender identifier to its bare digit string."""
    if not raw:
        return ""
    user = raw.split("@", 1)[0].split(":", 1)[0]
    return "".join(ch for ch in user if ch.isdigit())


def _numbers_match(a: str, b: str) -> bool:
    """Exact or suffix match in either direction (tolerates country-code drift)."""
    if not a or not b:
        return False
    return a == b or a.endswith(b) or b.endswith(a)


@dataclass(frozen=True)
class AccessPolicy:
    owner_numbers: tuple[str, ...] = ()
    mode: Literal["public", "private"] = "public"
    allowed_users: tuple[str, ...] = ()
    bot_number: str | None = None
    bot_lid: str | None = None

    @classmethod
    def build(
        cls,
        *,
        owner_numbers: Iterable[str],
        mode: Literal["public", "private"],
        allowed_users: Iterable[str],
        identity: BotIdentity | None = None,
    ) -> AccessPolicy:
        return cls(
            owner_numbers=tuple(normalize_id(n) for n in owner_numbers if normalize_id(n)),
            mode=mode,
            allowed_users=tuple(normalize_id(n) for n in allowed_users if normalize_id(n)),
            bot_number=normalize_id(identity.id) if identity else None,
            bot_lid=normalize_id(identity.lid) if identity and identity.lid else None,
        )


@dataclass(frozen=True)
class PermissionDecision:
    is_owner: bool
    is_allowed: bool = True


@dataclass(frozen=True)
class PermissionFlags:
    """What the sender (and the bot) may do in the current chat."""

    is_owner: bool = False
    is_admin: bool = False
    is_bot_admin: bool = False


def is_owner(sender_id: str, policy: AccessPolicy) -> bool:
    sender = normalize_id(sender_id)
    if not sender:
        return False
    if policy.bot_number and sender == policy.bot_number:
        return True
    if policy.bot_lid and sender == policy.bot_lid:
        return True
    return any(_numbers_match(sender, owner) for owner in policy.owner_numbers)


def classify(sender_id: str, policy: AccessPolicy) -> PermissionDecision:
    return PermissionDecision(is_owner=is_owner(sender_id, policy))


def is_allowed(sender_id: str, chat_id: str, policy: AccessPolicy) -> bool:
    """Mode gating. Owners bypass it unconditionally."""
    if is_owner(sender_id, policy):
        return True
    if policy.mode == "public":
        return True
    if is_group_jid(chat_id):
        return True
    return normalize_id(sender_id) in policy.allowed_users


def evaluate(sender_id: str, chat_id: str, policy: AccessPolicy) -> PermissionDecision:
    owner = is_owner(sender_id, policy)
    return PermissionDecision(
        is_owner=owner,
        is_allowed=owner or is_allowed(sender_id, chat_id, policy),
    )


def is_participant_admin(member_id: str | None, metadata: GroupMetadata | None) -> bool:
    """True if ``member_id`` (phone JID or LID) is an admin of the group."""
    if metadata is None or not member_id:
        return False
    wanted = normalize_id(member_id)
    if not wanted:
        return False
    for participant in metadata.participants:
        if not participant.is_admin:
            continue
        if wanted in (normalize_id(participant.id), normalize_id(participant.lid)):
            return True
    return False
