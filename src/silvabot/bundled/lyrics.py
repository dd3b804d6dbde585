"""Song lyrics lookup with a reply-to-download follow-up."""

from __future__ import annotations

import re

import aiohttp

from silvabot.logger import logger
from silvabot.plugins import Command, CommandContext, hookimpl
from silvabot.types import Outgoing

LYRICS_API = "https://api.zenzxz.my.id/api/tools/lirik"
PREVIEW_CHARS = 900
REPLY_WINDOW = 60.0


async def fetch_lyrics(query: str) -> dict | None:
    """First search hit, or None when the API has nothing."""
    timeout = aiohttp.ClientTimeout(total=20)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(LYRICS_API, params={"title": query}) as resp:
            resp.raise_for_status()
            payload = await resp.json(content_type=None)
    if not payload.get("success"):
        return None
    results = (payload.get("data") or {}).get("result") or []
    return results[0] if results else None


async def lyrics(ctx: CommandContext) -> None:
    query = ctx.raw_args
    if not query:
        await ctx.reply(
            "🎵 *Lyrics Engine*\n\n"
            f"Usage:\n{ctx.prefix}lyrics <song name>\n\n"
            f"Example:\n{ctx.prefix}lyrics perfect ed sheeran"
        )
        return

    song = await fetch_lyrics(query)
    if song is None:
        await ctx.reply("❌ *Lyrics not found. Try a different song.*")
        return

    title = song.get("trackName") or query
    artist = song.get("artistName") or "Unknown Artist"
    text = (song.get("plainLyrics") or "").strip() or "No lyrics available."
    truncated = len(text) > PREVIEW_CHARS
    preview = text[:PREVIEW_CHARS] + "\n\n_REPLY *1* FOR FULL LYRICS TXT_" if truncated else text

    prompt = await ctx.reply(
        f"🎧 *{title}*\n🎤 Artist: {artist}\n\n🎼 *Lyrics Preview*\n\n{preview}"
    )
    if not truncated or prompt is None:
        return

    reply = await ctx.wait_for_reply(prompt, timeout=REPLY_WINDOW)
    if reply is None or reply.text.strip() != "1":
        return

    file_name = re.sub(r"[^a-z0-9]", "_", title, flags=re.IGNORECASE) + ".txt"
    logger.info("Sending full lyrics", title=title, chat_id=ctx.chat_id)
    await ctx.app.connection.send_message(
        ctx.chat_id,
        Outgoing(
            text="📄 *Full Lyrics File*",
            media=f"{title}\n{artist}\n\n{text}".encode(),
            media_kind="document",
            mimetype="text/plain",
            file_name=file_name,
        ),
        quoted=reply,
    )


@hookimpl
def silvabot_commands() -> list[Command]:
    return [
        Command(
            names=("lyrics", "lyric", "lirik"),
            execute=lyrics,
            description="Find song lyrics",
            category="music",
            usage=("lyrics <song name>",),
        )
    ]
