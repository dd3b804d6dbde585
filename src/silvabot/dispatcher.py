"""Inbound message → command handler routing.

Bound to every socket the connection manager creates. Each batch is walked
strictly in order; one message's failure never stops the rest of the batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TYPE_CHECKING

from silvabot.errors import PluginError
from silvabot.event_bus import MessagesUpsert
from silvabot.logger import logger
from silvabot.parsing import parse_command
from silvabot.permissions import (
    AccessPolicy,
    PermissionFlags,
    evaluate,
    is_participant_admin,
)
from silvabot.plugins import Command, CommandContext, PluginRegistry
from silvabot.types import (
    STATUS_BROADCAST,
    GroupMetadata,
    InboundMessage,
    Outgoing,
    is_newsletter_jid,
)
from silvabot.utils import create_background_task

if TYPE_CHECKING:
    from silvabot.app import SilvaApp
    from silvabot.transport import Socket


class MessageDispatcher:
    def __init__(self, app: SilvaApp) -> None:
        self._app = app

    def bind(self, socket: Socket) -> None:
        socket.ev.subscribe(MessagesUpsert, self._on_upsert)

    async def _on_upsert(self, event: MessagesUpsert) -> None:
        if event.type != "notify":
            return
        await self.handle_batch(event.messages)

    async def handle_batch(self, messages: list[InboundMessage]) -> None:
        for message in messages:
            try:
                await self.handle_message(message)
            except Exception:
                logger.exception(
                    "Unhandled error in message handler",
                    message_id=message.id,
                    chat_id=message.chat_id,
                )

    async def handle_message(self, message: InboundMessage) -> bool:
        """Process one message. Returns True if a command handler ran."""
        app = self._app
        settings = app.settings
        socket = app.connection.socket
        if socket is None:
            return False

        chat_id = message.chat_id
        if chat_id == STATUS_BROADCAST or is_newsletter_jid(chat_id):
            return False

        if message.from_me:
            if settings.features.auto_read:
                await _best_effort(socket.read_messages([message]), "mark read", chat_id)
            return False

        if settings.features.auto_read:
            await _best_effort(socket.read_messages([message]), "mark read", chat_id)
        if settings.features.auto_typing:
            await _best_effort(socket.send_presence(chat_id, "composing"), "set typing", chat_id)

        if app.replies.offer(message):
            logger.debug("Message consumed by pending reply", chat_id=chat_id, id=message.id)
            return False

        policy = AccessPolicy.build(
            owner_numbers=settings.bot.owner_numbers,
            mode=settings.bot.mode,
            allowed_users=settings.bot.allowed_users,
            identity=app.connection.identity,
        )
        decision = evaluate(message.sender_id, chat_id, policy)
        if not decision.is_allowed:
            logger.debug("Sender not allowed in private mode", sender=message.sender_id)
            return False

        text = message.text
        prefix = settings.bot.prefix
        if not text.startswith(prefix):
            if settings.features.auto_reply and not message.is_group and text:
                await app.connection.send_message(
                    chat_id, Outgoing(text=settings.features.auto_reply_message)
                )
            return False

        parsed = parse_command(text, prefix)
        if parsed is None:
            return False

        resolved = self.resolve(parsed.name)
        if resolved is None:
            return False
        command, registry = resolved

        group: GroupMetadata | None = None
        is_admin = is_bot_admin = False
        if message.is_group and (command.admin or command.bot_admin):
            group = await app.connection.group_metadata(chat_id)
            is_admin = is_participant_admin(message.sender_id, group)
            identity = app.connection.identity
            if identity is not None:
                is_bot_admin = is_participant_admin(identity.id, group) or is_participant_admin(
                    identity.lid, group
                )
        flags = PermissionFlags(
            is_owner=decision.is_owner, is_admin=is_admin, is_bot_admin=is_bot_admin
        )

        denial = self._denial(command, message, flags)
        if denial is not None:
            logger.info(
                "Command denied",
                command=parsed.name,
                sender=message.sender_id,
                chat_id=chat_id,
            )
            await app.connection.send_message(chat_id, Outgoing(text=denial), quoted=message)
            return False

        ctx = CommandContext(
            chat_id=chat_id,
            sender_id=message.sender_id,
            is_group=message.is_group,
            command=parsed.name,
            args=parsed.args,
            raw_args=parsed.raw_args,
            permissions=flags,
            message=message,
            socket=socket,
            app=app,
            group=group,
        )
        logger.info(
            "Running command",
            command=parsed.name,
            plugin=command.source,
            sender=message.sender_id,
            chat_id=chat_id,
        )
        try:
            await registry.execute(
                parsed.name, ctx, timeout=settings.bot.command_timeout or None
            )
        except PluginError:
            await app.connection.send_message(
                chat_id, Outgoing(text=settings.messages.error), quoted=message
            )
        finally:
            create_background_task(self._reset_presence(chat_id), name=f"presence-{chat_id}")
        return True

    def resolve(self, token: str) -> tuple[Command, PluginRegistry] | None:
        """Built-ins first, then plugins."""
        for registry in (self._app.builtins, self._app.registry):
            command = registry.resolve(token)
            if command is not None:
                return command, registry
        return None

    def _denial(
        self, command: Command, message: InboundMessage, flags: PermissionFlags
    ) -> str | None:
        messages = self._app.settings.messages
        if command.owner and not flags.is_owner:
            return messages.owner_only
        if (command.group or command.admin or command.bot_admin) and not message.is_group:
            return messages.group_only
        if command.admin and not (flags.is_admin or flags.is_owner):
            return messages.admin_only
        if command.bot_admin and not flags.is_bot_admin:
            return messages.bot_admin_only
        return None

    async def _reset_presence(self, chat_id: str) -> None:
        await asyncio.sleep(self._app.settings.features.presence_reset_delay)
        socket = self._app.connection.socket
        if socket is not None:
            await _best_effort(socket.send_presence(chat_id, "paused"), "reset presence", chat_id)


async def _best_effort(call: Awaitable[None], what: str, chat_id: str) -> None:
    try:
        await call
    except Exception as exc:
        logger.debug(f"Failed to {what}", chat_id=chat_id, err=str(exc))
