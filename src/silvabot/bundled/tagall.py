"""Mention every member of the group."""

from __future__ import annotations

from silvabot.permissions import normalize_id
from silvabot.plugins import Command, CommandContext, hookimpl
from silvabot.types import Outgoing


async def tagall(ctx: CommandContext) -> None:
    metadata = ctx.group or await ctx.app.connection.group_metadata(ctx.chat_id)
    if metadata is None:
        await ctx.reply("❌ Could not load group members")
        return

    identity = ctx.app.connection.identity
    bot_number = normalize_id(identity.id) if identity else ""
    users = [p.id for p in metadata.participants if normalize_id(p.id) != bot_number]

    lines = [
        f"▢ *Group:* {metadata.subject}",
        f"▢ *Members:* {len(metadata.participants)}",
    ]
    if ctx.raw_args:
        lines.append(f"▢ *Message:* {ctx.raw_args}")
    lines += ["", "┌───⊷ *MENTIONS*"]
    lines += [f"▢ @{jid.split('@')[0]}" for jid in users]
    lines.append("━━━━━━━━━━ 𝐒𝐈𝐋𝐕𝐀 𝐌𝐃 𝐁𝐎𝐓 ━━━━━━━━━━")

    await ctx.reply(Outgoing(text="\n".join(lines), mentions=users))


@hookimpl
def silvabot_commands() -> list[Command]:
    return [
        Command(
            names=("tagall",),
            execute=tagall,
            group=True,
            description="Mention everyone",
            category="group",
            usage=("tagall <optional message>",),
        )
    ]
