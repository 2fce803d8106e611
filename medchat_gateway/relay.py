"""
Streaming response relay.

StreamRelay drives exactly one upstream generation call per conversation
turn and turns the decoded stream into an ordered sequence of client
notifications:

- zero or more `partial` snapshots, each carrying the full text so far
- exactly one `complete` snapshot, always the last one for the turn

Upstream failures (timeout, connection error, non-success status, malformed
stream) never escape `relay()`: they are logged and replaced by a fallback
answer delivered through the same `complete` notification. Cancellation by
the caller propagates as `asyncio.CancelledError` without further
notifications.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from .llm.client import UpstreamClient
from .llm.exceptions import MessageValidationError
from .llm.models import ConversationTurn, Notification, RelayOptions, TurnStatus
from .llm.streaming.models import StreamEventType
from .llm.streaming.parser import Decoder, create_decoder
from .logging_utils import ContextualLogger, RelayErrorHandler
from .responses import (
    EMPTY_MESSAGE_ERROR,
    FALLBACK_MESSAGES,
    MESSAGE_TOO_LONG_ERROR,
)

NotificationSink = Callable[[Notification], Awaitable[None]]

DEFAULT_MAX_INPUT_LENGTH = 2000
FALLBACK_SEPARATOR = "\n\n"


class _NotificationDelivery:
    """Forwards notifications to the sink until it stops accepting them."""

    def __init__(self, notify: NotificationSink, log: ContextualLogger):
        self._notify = notify
        self._log = log
        self.reachable = True
        self.delivered = 0

    async def send(self, notification: Notification) -> None:
        if not self.reachable:
            return
        try:
            await self._notify(notification)
        except Exception as e:
            self.reachable = False
            self._log.warning(
                "Client unreachable, dropping remaining notifications",
                error_type=type(e).__name__,
                error_message=str(e),
            )
        else:
            self.delivered += 1


class StreamRelay:
    """Relays one upstream generation stream per turn to a notification sink."""

    def __init__(
        self,
        client: UpstreamClient,
        default_options: RelayOptions,
        fallback_messages: Sequence[str] | None = None,
        max_input_length: int = DEFAULT_MAX_INPUT_LENGTH,
        rng: random.Random | None = None,
    ):
        if max_input_length < 1:
            raise ValueError("max_input_length must be at least 1")

        self.client = client
        self.default_options = default_options
        self.fallback_messages = tuple(fallback_messages or FALLBACK_MESSAGES)
        if not self.fallback_messages:
            raise ValueError("At least one fallback message is required")
        self.max_input_length = max_input_length
        self._rng = rng or random.Random()
        self.stats = {
            "turns_started": 0,
            "turns_completed": 0,
            "turns_failed": 0,
            "turns_cancelled": 0,
        }

    def validate_input(self, input_text: str) -> str:
        """Return the trimmed message or raise MessageValidationError."""
        text = input_text.strip() if isinstance(input_text, str) else ""
        if not text:
            raise MessageValidationError(
                MessageValidationError.EMPTY, EMPTY_MESSAGE_ERROR
            )
        if len(text) > self.max_input_length:
            raise MessageValidationError(
                MessageValidationError.TOO_LONG,
                MESSAGE_TOO_LONG_ERROR.format(limit=self.max_input_length),
            )
        return text

    def choose_fallback(self) -> str:
        """Pick one of the configured fallback answers."""
        return self._rng.choice(self.fallback_messages)

    async def relay(
        self,
        input_text: str,
        notify: NotificationSink,
        opts: RelayOptions | None = None,
    ) -> str:
        """
        Stream one answer for `input_text` into `notify`.

        Args:
            input_text: The user's message
            notify: Async sink receiving Notification snapshots
            opts: Per-call overrides of endpoint, model, mode and timeout

        Returns:
            The final answer text, or the fallback text on upstream failure

        Raises:
            MessageValidationError: Input empty or over the length limit;
                raised before any upstream call
            asyncio.CancelledError: The turn was cancelled by the caller
        """
        text = self.validate_input(input_text)
        opts = opts or self.default_options
        turn = ConversationTurn(input_text=text)
        log = ContextualLogger({
            "request_id": turn.request_id,
            "mode": opts.mode.value,
            "model": opts.model,
        })
        delivery = _NotificationDelivery(notify, log)
        decoder = create_decoder(opts.mode)

        self.stats["turns_started"] += 1
        log.info("Turn started", input_chars=len(text))

        try:
            # the deadline covers the upstream read only, not the final send
            async with asyncio.timeout(opts.timeout):
                await self._stream_turn(turn, decoder, delivery, opts, log)
        except asyncio.CancelledError:
            turn.transition(TurnStatus.CANCELLED)
            self.stats["turns_cancelled"] += 1
            log.info(
                "Turn cancelled", accumulated_chars=len(turn.accumulated_text)
            )
            raise
        except Exception as e:
            return await self._fail(turn, decoder, delivery, e, log)

        return await self._complete(turn, decoder, delivery, log)

    async def _stream_turn(
        self,
        turn: ConversationTurn,
        decoder: Decoder,
        delivery: _NotificationDelivery,
        opts: RelayOptions,
        log: ContextualLogger,
    ) -> None:
        async with self.client.open_stream(turn.input_text, opts) as response:
            turn.transition(TurnStatus.STREAMING)
            async for chunk in response.aiter_text():
                for event in decoder.feed(chunk):
                    if event.kind is StreamEventType.DONE:
                        return
                    await delivery.send(
                        Notification.partial_snapshot(turn.append(event.content))
                    )
            decoder.finish()

        log.debug("Upstream closed without completion signal")

    async def _complete(
        self,
        turn: ConversationTurn,
        decoder: Decoder,
        delivery: _NotificationDelivery,
        log: ContextualLogger,
    ) -> str:
        turn.transition(TurnStatus.COMPLETE)
        self.stats["turns_completed"] += 1
        await delivery.send(Notification.final(turn.accumulated_text))
        log.info(
            "Turn completed",
            answer_chars=len(turn.accumulated_text),
            notifications=delivery.delivered,
            **decoder.get_stats(),
        )
        return turn.accumulated_text

    async def _fail(
        self,
        turn: ConversationTurn,
        decoder: Decoder,
        delivery: _NotificationDelivery,
        error: Exception,
        log: ContextualLogger,
    ) -> str:
        fallback = self.choose_fallback()
        if turn.accumulated_text:
            # keep snapshots monotonic when partial text was already shown
            final_text = turn.accumulated_text + FALLBACK_SEPARATOR + fallback
        else:
            final_text = fallback

        turn.accumulated_text = final_text
        turn.transition(TurnStatus.FAILED)
        self.stats["turns_failed"] += 1

        error_data = {**RelayErrorHandler.describe(error), **decoder.get_stats()}
        if error_data["error_category"] == "unknown_error":
            log.error(
                "Unexpected relay failure, sending fallback answer", **error_data
            )
        else:
            log.warning("Upstream failed, sending fallback answer", **error_data)
        await delivery.send(Notification.final(final_text, is_fallback=True))
        return final_text

    def get_statistics(self) -> dict[str, Any]:
        """Get relay statistics for monitoring."""
        return {
            **self.stats,
            "model": self.default_options.model,
            "mode": self.default_options.mode.value,
        }
