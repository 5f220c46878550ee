"""Follow a chat from the terminal with the reconnecting realtime client.

Usage:
    python -m scripts.chat_client --token <jwt> [--base-url http://127.0.0.1:8004]
        [--chat <chatId> ...]
"""

import argparse
import asyncio
from typing import Any

import structlog

from app.core.config import settings
from app.realtime.client import ChatRealtimeClient

logger = structlog.get_logger()


async def print_event(event: str, data: dict[str, Any]) -> None:
    if event == "new-message":
        message = data["message"]
        print(f"[{message['timestamp']}] {message['senderId']}: {message['body']}")
    else:
        logger.info("Event", event_name=event, chat_id=data.get("chatId"))


async def follow(base_url: str, token: str, chat_ids: list[str]) -> None:
    client = ChatRealtimeClient(base_url=base_url, token=token, on_event=print_event)
    for chat_id in chat_ids:
        await client.join_chat(chat_id)
    await client.start()
    try:
        await client.connected.wait()
        if client.active_chat_id is not None:
            for message in client.buffer(client.active_chat_id).messages:
                print(f"[{message.timestamp.isoformat()}] {message.sender_id}: {message.body}")
        await asyncio.Event().wait()
    finally:
        await client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Follow chat events")
    parser.add_argument("--token", required=True, help="Access token")
    parser.add_argument("--base-url", default=settings.server.base_url, help="Server URL")
    parser.add_argument(
        "--chat", action="append", default=[], help="Extra chat to watch (admins)"
    )
    args = parser.parse_args()

    try:
        asyncio.run(follow(args.base_url, args.token, args.chat))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
