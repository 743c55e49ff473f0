"""
Bounded-window scanner for IDRegistered events.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from .errors import error_text
from .evm import BlockId, WalletProtocol

logger = structlog.get_logger()

DEFAULT_LOOKBACK_BLOCKS = 10_000

LogFetcher = Callable[[BlockId, BlockId], Awaitable[list[Any]]]


@dataclass(frozen=True)
class RawEvent:
    """A registration event as read from the chain."""

    id: str
    primary_address: str  # "ethereum" field of the event
    secondary_address: str  # "polygon" field of the event
    block_number: int
    log_index: int = 0


def parse_registration_log(log: Any) -> Optional[RawEvent]:
    """Turn a decoded log into a RawEvent, or None if a field is missing or corrupt."""
    try:
        args = log["args"]
        identifier = args.get("id")
        ethereum = args.get("ethereum")
        polygon = args.get("polygon")
        block_number = log["blockNumber"]
        if not identifier or not ethereum or not polygon or block_number is None:
            return None

        log_index = log.get("logIndex") if hasattr(log, "get") else None
        return RawEvent(
            id=str(identifier),
            primary_address=str(ethereum),
            secondary_address=str(polygon),
            block_number=int(block_number),
            log_index=int(log_index or 0),
        )
    except (KeyError, TypeError, AttributeError, ValueError):
        return None


class EventWindowScanner:
    """
    Reads registration events from the most recent lookback window.

    Identity data is best-effort: a failed query yields an empty result,
    a warning log and last_error set for the caller to display.
    Registrations older than the window are not visible.
    """

    def __init__(self, wallet: WalletProtocol, lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS):
        self.wallet = wallet
        self.lookback_blocks = lookback_blocks
        self.last_error: Optional[str] = None

    async def scan(self, fetch_logs: LogFetcher) -> list[RawEvent]:
        """Fetch logs in [max(0, head - lookback), latest] and parse them."""
        self.last_error = None
        try:
            head = await self.wallet.get_block_number()
            from_block = max(0, head - self.lookback_blocks)
            logs = await fetch_logs(from_block, "latest")
        except Exception as e:
            self.last_error = error_text(e)
            logger.warning("event_scan_failed", error=self.last_error)
            return []

        events = []
        dropped = 0
        for log in logs:
            event = parse_registration_log(log)
            if event is None:
                dropped += 1
                continue
            events.append(event)

        logger.debug("event_scan_complete", from_block=from_block, events=len(events), dropped=dropped)
        return events
