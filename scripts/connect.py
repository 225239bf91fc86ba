#!/usr/bin/env python3
"""Interactive tachobridge sign-in and card sync.

Connects this machine as a tachograph bridge: requests a device
authorization, opens the approval page, waits for the confirmation and then
prints the Fleet card directory.

Configuration is read from ``TACHOBRIDGE_*`` environment variables (see
``BridgeConfig.from_env``).  Credentials are kept in ``--credentials``
(default: ``~/.tachobridge/credentials.json``) so a second run reuses them.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from tachobridge import AuthState, BridgeClient, BridgeConfig, TachoBridgeError  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Connect this machine as a tachograph bridge")
    parser.add_argument(
        "--credentials",
        default=str(Path.home() / ".tachobridge" / "credentials.json"),
        help="JSON file holding the persisted credentials.",
    )
    parser.add_argument(
        "--disconnect",
        action="store_true",
        help="Remove the bridge registration and clear stored credentials, then exit.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging.")
    return parser.parse_args()


def _print_state(state: AuthState, message: str) -> None:
    print(f"[{state}] {message}")


async def _run(args: argparse.Namespace) -> int:
    config = BridgeConfig.from_env(credentials_path=args.credentials)

    async with BridgeClient(config, on_state_change=_print_state) as client:
        await client.initialize()

        if args.disconnect:
            await client.disconnect()
            return 0

        if not client.is_connected and client.flow.pending_token is None:
            try:
                await client.connect()
            except TachoBridgeError as exc:
                print(f"Could not start the sign-in: {exc}")
                return 1
            if client.flow.approval_url:
                print(f"If no browser opened, visit: {client.flow.approval_url}")

        await client.flow.wait_for_polling()
        if not client.is_connected:
            print(f"Not connected: {client.flow.status_message}")
            return 1

        user = client.user
        if user is not None:
            print(f"Signed in as {user.display_name or user.id} ({user.organization_name or 'no organization'})")

        try:
            await client.sync_cards()
        except TachoBridgeError as exc:
            print(f"Card sync failed: {exc}")
            return 1

        cards = client.cards.registry.snapshot()
        if not cards:
            print("No company cards registered for this bridge")
        for number, card in sorted(cards.items()):
            print(f"  {number}  {card.display_name or '-'}  iccid={card.iccid or '-'}")
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
