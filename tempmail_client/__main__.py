"""Entry point for the tempmail client package.

Usage::

    python -m tempmail_client domains   # list usable domains of enabled providers
    python -m tempmail_client watch     # log in and log every new message

``watch`` reads ``TEMPMAIL_ADDRESS`` / ``TEMPMAIL_PASSWORD``; without them it
resumes the persisted current account (``TEMPMAIL_STORAGE_PATH``).
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys

import structlog

from .client import TempMailClient
from .config import ClientConfig
from .errors import TempMailError
from .logging import setup_logging
from .models import Message

logger = structlog.get_logger()


async def _list_domains(client: TempMailClient) -> int:
    for domain in await client.fetch_domains():
        print(json.dumps(domain.model_dump(mode="json", by_alias=True, exclude_none=True)))
    return 0


def _on_new_message(message: Message) -> None:
    sender = message.sender.address if message.sender else ""
    logger.info("mail_received", message_id=message.id, sender=sender, subject=message.subject)


async def _watch(client: TempMailClient) -> int:
    config = client.config
    if config.address and config.password:
        await client.session.login(config.address, config.password.get_secret_value())
    elif client.session.current_account is not None:
        await client.session.switch_account(client.session.current_account)
    else:
        logger.error("watch_no_account", hint="set TEMPMAIL_ADDRESS and TEMPMAIL_PASSWORD")
        return 1

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    async with client.create_poller(on_new_message=_on_new_message):
        logger.info("watching_inbox", address=client.session.current_account.address)
        await shutdown.wait()
    return 0


async def _run(mode: str, config: ClientConfig) -> int:
    async with TempMailClient(config) as client:
        try:
            if mode == "domains":
                return await _list_domains(client)
            return await _watch(client)
        except TempMailError as exc:
            logger.error("command_failed", mode=mode, error=str(exc))
            return 1


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("domains", "watch"):
        print("Usage: python -m tempmail_client <domains|watch>", file=sys.stderr)
        sys.exit(1)

    config = ClientConfig()
    setup_logging(json=config.log_json, level=config.log_level)
    sys.exit(asyncio.run(_run(sys.argv[1], config)))


if __name__ == "__main__":
    main()
