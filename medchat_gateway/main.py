"""
Main module for the medical chat gateway.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys

from .chat_service import ChatService
from .config import Configuration
from .llm.client import UpstreamClient
from .relay import StreamRelay
from .store import SessionStore
from .websocket_server import ServerConfig, run_websocket_server


def create_upstream_client(config: Configuration) -> UpstreamClient:
    """Create the shared upstream HTTP client from configuration."""
    return UpstreamClient(
        params=config.get_generation_params(),
        api_key=config.llm_api_key,
        http_config=config.get_http_client_config(),
    )


def create_chat_service(
    config: Configuration, client: UpstreamClient
) -> ChatService:
    """Wire relay, session store and chat service together."""
    relay = StreamRelay(
        client,
        config.get_relay_options(),
        fallback_messages=config.get_fallback_messages(),
        max_input_length=config.get_relay_config()["max_message_length"],
    )
    rate_limit_enabled, rate_limit_config = config.get_rate_limit_config()
    return ChatService(ChatService.ChatServiceConfig(
        relay=relay,
        store=SessionStore(rate_limit_config),
        welcome_message=config.get_welcome_message(),
        rate_limit_enabled=rate_limit_enabled,
    ))


async def main() -> None:
    """Main entry point - WebSocket interface with graceful shutdown handling."""
    config = Configuration()
    log_level = config.get_log_level()
    logging.basicConfig(
        level=log_level, format="%(asctime)s - %(levelname)s - %(message)s"
    )

    relay_options = config.get_relay_options()
    logging.info(f"Upstream URL: {relay_options.base_url}")
    logging.info(f"Model: {relay_options.model} ({relay_options.mode.value})")

    # Setup graceful shutdown handler
    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        """Handle shutdown signals gracefully."""
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    async with create_upstream_client(config) as client:
        try:
            server_config = ServerConfig(
                chat_service=create_chat_service(config, client),
                client=client,
                relay_options=relay_options,
                health_timeout=config.get_relay_config()["health_timeout"],
                websocket=config.get_websocket_config(),
                log_level=logging.getLevelName(log_level).lower(),
                shutdown_event=shutdown_event,
            )
            server_task = asyncio.create_task(run_websocket_server(server_config))

            # Wait for either server completion or shutdown signal
            done, pending = await asyncio.wait(
                [server_task, asyncio.create_task(shutdown_event.wait())],
                return_when=asyncio.FIRST_COMPLETED
            )

            for task in pending:
                if task is server_task:
                    # the server exits on its own once it sees the event
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
                else:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

            for task in done:
                if task is server_task:
                    exception = task.exception()
                    if exception is not None:
                        raise exception

        except KeyboardInterrupt:
            logging.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logging.error(f"Application error: {e}")
            raise
        finally:
            logging.info("Application shutdown complete")


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
