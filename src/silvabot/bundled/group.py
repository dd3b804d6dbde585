"""Group administration: add, kick, promote, demote, invite link, info."""

from __future__ import annotations

from datetime import UTC, datetime

from silvabot.plugins import Command, CommandContext, hookimpl
from silvabot.transport.base import ParticipantAction
from silvabot.types import user_jid

_MIN_DIGITS = 10

_DONE = {
    "add": "✅ Added {who} to the group",
    "remove": "✅ Kicked {who} from the group",
    "promote": "✅ Promoted {who} to admin",
    "demote": "✅ Demoted {who} from admin",
}

_FAILED = {
    "add": "add",
    "remove": "kick",
    "promote": "promote",
    "demote": "demote",
}


def _target(ctx: CommandContext, *, allow_quoted: bool) -> str | None:
    """The quoted message's author, else the number in the first argument."""
    quoted = ctx.message.content.quoted_sender
    if allow_quoted and quoted:
        return quoted
    if ctx.args:
        digits = "".join(ch for ch in ctx.args[0] if ch.isdigit())
        if len(digits) >= _MIN_DIGITS:
            return user_jid(digits)
    return None


def _participant_command(name: str, action: ParticipantAction, description: str) -> Command:
    allow_quoted = action != "add"

    async def execute(ctx: CommandContext) -> None:
        if not ctx.args and not (allow_quoted and ctx.message.content.quoted_sender):
            hint = (
                "Please provide a phone number"
                if action == "add"
                else "Reply to a message or provide a phone number"
            )
            await ctx.reply(f"{hint}\nExample: {ctx.prefix}{name} 254700143167")
            return
        target = _target(ctx, allow_quoted=allow_quoted)
        if target is None:
            await ctx.reply("❌ Invalid phone number")
            return
        who = target.split("@")[0]
        try:
            await ctx.socket.group_participants_update(ctx.chat_id, [target], action)
        except Exception as exc:
            await ctx.reply(f"❌ Failed to {_FAILED[action]} user: {exc}")
            return
        await ctx.reply(_DONE[action].format(who=who))

    return Command(
        names=(name,),
        execute=execute,
        group=True,
        admin=True,
        bot_admin=True,
        description=description,
        category="group",
        usage=(f"{name} <number>",),
    )


async def link(ctx: CommandContext) -> None:
    try:
        code = await ctx.socket.group_invite_code(ctx.chat_id)
    except Exception as exc:
        await ctx.reply(f"❌ Failed to get group link: {exc}")
        return
    await ctx.reply(
        "🔗 *Group Invite Link:*\n\n"
        f"https://chat.whatsapp.com/{code}\n\n"
        "Share this link to invite others!"
    )


async def info(ctx: CommandContext) -> None:
    metadata = ctx.group or await ctx.app.connection.group_metadata(ctx.chat_id)
    if metadata is None:
        await ctx.reply("❌ Could not load group info")
        return
    created = (
        datetime.fromtimestamp(metadata.created_at, tz=UTC).strftime("%Y-%m-%d")
        if metadata.created_at
        else "Unknown"
    )
    creator = metadata.owner.split("@")[0] if metadata.owner else "Unknown"
    await ctx.reply(
        "👥 *Group Info*\n\n"
        f"📛 *Name:* {metadata.subject}\n"
        f"👑 *Admins:* {len(metadata.admins)}\n"
        f"👤 *Members:* {len(metadata.participants)}\n"
        f"📅 *Created:* {created}\n"
        f"👤 *Creator:* {creator}\n"
        f"📝 *Description:* {metadata.description or 'No description'}"
    )


@hookimpl
def silvabot_commands() -> list[Command]:
    return [
        _participant_command("add", "add", "Add a member"),
        _participant_command("kick", "remove", "Remove a member"),
        _participant_command("promote", "promote", "Make a member admin"),
        _participant_command("demote", "demote", "Revoke a member's admin"),
        Command(
            names=("link",),
            execute=link,
            group=True,
            bot_admin=True,
            description="Group invite link",
            category="group",
        ),
        Command(
            names=("ginfo", "groupinfo"),
            execute=info,
            group=True,
            description="Group details",
            category="group",
        ),
    ]
