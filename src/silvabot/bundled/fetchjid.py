"""Resolve a group invite link to the group's JID."""

from __future__ import annotations

import re

from silvabot.plugins import Command, CommandContext, hookimpl

_INVITE_RE = re.compile(r"https?://chat\.whatsapp\.com/([0-9A-Za-z]+)")


async def fetchjid(ctx: CommandContext) -> None:
    if not ctx.args:
        await ctx.reply("⚠️ Please provide a WhatsApp group invite link.")
        return
    match = _INVITE_RE.search(ctx.args[0])
    if match is None:
        await ctx.reply("❌ Invalid group link.")
        return
    try:
        group = await ctx.socket.group_info_from_invite(match.group(1))
    except Exception:
        await ctx.reply("❌ Could not fetch JID. The link may be invalid or expired.")
        return
    await ctx.reply(f"✅ *JID fetched successfully!*\n\n{group.id}")


@hookimpl
def silvabot_commands() -> list[Command]:
    return [
        Command(
            names=("fetchjid",),
            execute=fetchjid,
            description="Get a group's JID from its invite link",
            category="utilities",
            usage=("fetchjid <group link>",),
        )
    ]
