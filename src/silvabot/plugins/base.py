"""Command descriptor and the per-message context handed to handlers."""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from silvabot.permissions import PermissionFlags
from silvabot.types import GroupMetadata, InboundMessage, Outgoing, Receipt

if TYPE_CHECKING:
    from silvabot.app import SilvaApp
    from silvabot.transport import Socket

type Handler = Callable[[CommandContext], Awaitable[None]]


@dataclass(frozen=True)
class Command:
    """One command exposed by a plugin.

    ``names`` are the tokens the command claims (the first one is shown in
    menus). ``pattern`` optionally widens matching; it is always matched
    against the whole token, case-insensitively. When omitted it is the
    alternation of ``names``.
    """

    names: tuple[str, ...]
    execute: Handler
    pattern: str | None = None
    group: bool = False
    admin: bool = False
    bot_admin: bool = False
    owner: bool = False
    description: str = ""
    category: str = "misc"
    usage: tuple[str, ...] = ()
    source: str = ""
    matcher: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.names, str):
            object.__setattr__(self, "names", (self.names,))
        names = tuple(n.strip().lower() for n in self.names if n and n.strip())
        if not names:
            raise ValueError("Command must claim at least one name")
        object.__setattr__(self, "names", names)
        if not callable(self.execute):
            raise ValueError(f"Command {names[0]!r} has no callable execute")
        if not (
            inspect.iscoroutinefunction(self.execute)
            or inspect.iscoroutinefunction(getattr(self.execute, "__call__", None))
        ):
            raise ValueError(f"Command {names[0]!r} execute must be an async function")
        source = self.pattern or "|".join(re.escape(n) for n in names)
        try:
            matcher = re.compile(rf"(?:{source})", re.IGNORECASE)
        except re.error as exc:
            raise ValueError(f"Command {names[0]!r} has an invalid pattern: {exc}") from exc
        object.__setattr__(self, "matcher", matcher)

    @property
    def name(self) -> str:
        return self.names[0]

    def matches(self, token: str) -> bool:
        return self.matcher.fullmatch(token) is not None


@dataclass
class CommandContext:
    """Built fresh for every command invocation; never shared."""

    chat_id: str
    sender_id: str
    is_group: bool
    command: str
    args: list[str]
    permissions: PermissionFlags
    message: InboundMessage
    socket: Socket
    app: SilvaApp
    raw_args: str = ""
    group: GroupMetadata | None = None

    @property
    def prefix(self) -> str:
        return self.app.settings.bot.prefix

    async def reply(self, content: str | Outgoing, *, quote: bool = True) -> Receipt | None:
        """Send to the originating chat, quoting the triggering message."""
        if isinstance(content, str):
            content = Outgoing(text=content)
        return await self.app.connection.send_message(
            self.chat_id, content, quoted=self.message if quote else None
        )

    async def send(self, chat_id: str, content: str | Outgoing) -> Receipt | None:
        if isinstance(content, str):
            content = Outgoing(text=content)
        return await self.app.connection.send_message(chat_id, content)

    async def wait_for_reply(
        self, prompt: Receipt, *, timeout: float = 120.0, any_sender: bool = False
    ) -> InboundMessage | None:
        """Wait for a message quoting ``prompt``. None once ``timeout`` passes."""
        return await self.app.replies.wait_for_reply(
            self.chat_id,
            prompt.id,
            sender_id=None if any_sender else self.sender_id,
            timeout=timeout,
        )
