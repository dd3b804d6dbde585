"""Interactive WhatsApp pairing.

Run this once to link the bot as a WhatsApp device. Shows a QR code (or a
pair code with ``--phone``), waits for the link, saves credentials and prints
a session token that can be set as ``SESSION__SESSION_ID`` elsewhere.

Usage: silvabot auth [--phone 2547XXXXXXXX]
"""

from __future__ import annotations

import asyncio
import contextlib

from neonize.aioze import client as neonize_client
from neonize.aioze import events as neonize_events
from neonize.aioze.client import NewAClient
from neonize.events import ConnectedEv, ConnectFailureEv, LoggedOutEv, PairStatusEv

from silvabot.config import Settings
from silvabot.connection import render_qr
from silvabot.session import dump_session


async def authenticate(settings: Settings, phone: str | None = None) -> int:
    """Pair a new device. Returns a process exit code."""
    # Neonize creates its own event loop at import time. Both the events module
    # and client module hold their own reference, so patch both.
    loop = asyncio.get_running_loop()
    neonize_events.event_global_loop = loop
    neonize_client.event_global_loop = loop

    auth_db = settings.credentials_path
    auth_db.parent.mkdir(parents=True, exist_ok=True)
    client = NewAClient(str(auth_db))

    if await client.is_logged_in:
        print("✓ Already authenticated with WhatsApp")
        print(f"  To re-authenticate, delete {auth_db} and run again.")
        return 0

    print("Starting WhatsApp authentication...\n")
    if phone:
        print("A pair code will be shown below:")
        print("  1. Open WhatsApp on your phone")
        print("  2. Tap Settings → Linked Devices → Link a Device")
        print("  3. Choose 'Link with phone number instead' and enter the code\n")
    else:
        print("Scan the QR code with WhatsApp:")
        print("  1. Open WhatsApp on your phone")
        print("  2. Tap Settings → Linked Devices → Link a Device")
        print("  3. Point your camera at the QR code below\n")

    done = asyncio.Event()
    exit_code = 0
    pair_requested = False

    @client.event.qr
    async def on_qr(_client: NewAClient, qr_data: bytes) -> None:
        nonlocal pair_requested
        if phone:
            if not pair_requested:
                pair_requested = True
                digits = "".join(ch for ch in phone if ch.isdigit())
                code = await client.PairPhone(digits, show_push_notification=True)
                print(f"  Pair code: {code}\n", flush=True)
            return
        data = qr_data.decode() if isinstance(qr_data, bytes) else str(qr_data)
        print(render_qr(data), flush=True)

    @client.event(ConnectedEv)
    async def on_connected(_client: NewAClient, _ev: ConnectedEv) -> None:
        print("\n✓ Successfully authenticated with WhatsApp!")
        print(f"  Credentials saved to {auth_db}")
        done.set()

    @client.event(PairStatusEv)
    async def on_pair_status(_client: NewAClient, ev: PairStatusEv) -> None:
        print(f"  Paired as {ev.ID.User}")

    @client.event(LoggedOutEv)
    async def on_logged_out(_client: NewAClient, _ev: LoggedOutEv) -> None:
        nonlocal exit_code
        print(f"\n✗ Logged out. Delete {auth_db} and try again.")
        exit_code = 1
        done.set()

    @client.event(ConnectFailureEv)
    async def on_connect_failure(_client: NewAClient, _ev: ConnectFailureEv) -> None:
        nonlocal exit_code
        print("\n✗ Connection failed. Please try again.")
        exit_code = 1
        done.set()

    await client.connect()

    # Run idle in background so events keep firing
    idle_task = asyncio.ensure_future(client.idle())

    await done.wait()

    idle_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await idle_task
    with contextlib.suppress(Exception):
        await client.disconnect()

    if exit_code == 0:
        token = dump_session(auth_db, magic=settings.session.magic)
        print("\n  Session token (set as SESSION__SESSION_ID to deploy elsewhere):\n")
        print(token)
    return exit_code
