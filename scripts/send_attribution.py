"""
Sends an attribution record to the relay the way the Mini App does.

Usage:
    python scripts/send_attribution.py --init-data "<raw initData>"
    python scripts/send_attribution.py --telegram-id 123 --start-param camp1
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables before settings are read
load_dotenv()

from app.core.logging import setup_logging
from app.flow.controller import DeliveryConfig, DeliveryController, DeliverySession
from app.flow.host import LoggingHost
from app.flow.states import DeliveryState
from app.services.init_data import extract_attribution


def parse_args():
    parser = argparse.ArgumentParser(description="Send Mini App attribution to the relay")
    parser.add_argument("--init-data", default="", help="Raw Telegram.WebApp.initData string")
    parser.add_argument("--telegram-id", type=int, help="User id when no initData is given")
    parser.add_argument("--start-param", help="Campaign tag (overrides initData)")
    parser.add_argument("--launch-url", help="Mini App launch URL carrying tgWebAppStartParam")
    parser.add_argument("--platform", default="cli")
    parser.add_argument("--url", help="Relay endpoint (defaults to BRIDGE_ENDPOINT_URL)")
    return parser.parse_args()


def print_state(state: DeliveryState, message: str):
    icons = {
        DeliveryState.LOADING: "⏳",
        DeliveryState.SUCCESS: "✅",
        DeliveryState.ERROR: "❌",
    }
    print(f"{icons.get(state, '•')} {state.value}: {message}")


async def main():
    args = parse_args()
    setup_logging()

    unsafe = {}
    if args.start_param:
        unsafe["start_param"] = args.start_param
    if args.telegram_id:
        unsafe["user"] = {"id": args.telegram_id}

    def extract():
        return extract_attribution(
            init_data_unsafe=unsafe or None,
            init_data_raw=args.init_data,
            platform=args.platform,
            version="cli",
            launch_url=args.launch_url,
        )

    config = DeliveryConfig.from_settings()
    if args.url:
        config.endpoint_url = args.url

    host = LoggingHost()
    controller = DeliveryController(config, host=host, on_state_change=print_state)
    session = DeliverySession(extract=extract)

    print(f"🧪 Sending attribution to {config.endpoint_url}")
    state = await controller.run(session)

    while state == DeliveryState.ERROR:
        answer = input("Retry? [y/N] ").strip().lower()
        if answer != "y":
            break
        state = await controller.retry(session)

    print(f"\nAttempts: {session.attempts}")
    if session.response is not None:
        print(f"📥 Response: {json.dumps(session.response, ensure_ascii=False)[:500]}")
    if host.sent:
        print(f"📤 Sent to bot: {host.sent[-1]}")

    return 0 if state == DeliveryState.SUCCESS else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
