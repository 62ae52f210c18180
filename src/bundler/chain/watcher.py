"""
Block-head watchers.

Deliver new block numbers to a single async handler. Two sources are
provided: polling ``eth_blockNumber`` over the node adapter, and an
``eth_subscribe("newHeads")`` WebSocket subscription.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Set

import structlog
import websockets

from bundler.chain.interface import ChainInterface
from bundler.core.errors import NetworkError

logger = structlog.get_logger(__name__)

BlockHandler = Callable[[int], Awaitable[None]]


class BlockSource(ABC):
    """
    Source of block-head notifications.

    One handler at a time. Handler invocations run as independent tasks, so
    a slow handler may still be running when the next block arrives.
    """

    def __init__(self):
        self._handler: Optional[BlockHandler] = None
        self._handler_tasks: Set[asyncio.Task] = set()

    @property
    def is_subscribed(self) -> bool:
        return self._handler is not None

    @abstractmethod
    async def subscribe(self, handler: BlockHandler) -> None:
        """Start delivering block numbers to ``handler``."""
        pass

    @abstractmethod
    def unsubscribe(self) -> None:
        """
        Stop delivering notifications.

        Safe to call more than once. Handler invocations already running are
        left to complete.
        """
        pass

    def _dispatch(self, block_number: int) -> None:
        """Run the handler for one block as its own task."""
        if self._handler is None:
            return
        task = asyncio.create_task(self._handler(block_number))
        self._handler_tasks.add(task)
        task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("block_handler_failed", error=str(task.exception()))

    async def drain(self) -> None:
        """Wait for running handler invocations to finish."""
        if self._handler_tasks:
            await asyncio.gather(*self._handler_tasks, return_exceptions=True)


class PollingBlockWatcher(BlockSource):
    """Polls the node for the head block number."""

    def __init__(self, chain: ChainInterface, poll_interval_seconds: float = 2.0):
        super().__init__()
        self.chain = chain
        self.poll_interval_seconds = poll_interval_seconds
        self._poll_task: Optional[asyncio.Task] = None
        self._last_seen: Optional[int] = None

    async def subscribe(self, handler: BlockHandler) -> None:
        if self._handler is not None:
            raise RuntimeError("Block watcher already has a subscriber")

        self._handler = handler
        self._last_seen = await self.chain.get_block_number()
        self._poll_task = asyncio.create_task(self._poll())
        logger.info("block_polling_started", head=self._last_seen, interval=self.poll_interval_seconds)

    def unsubscribe(self) -> None:
        if self._handler is None:
            return
        self._handler = None
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        logger.info("block_polling_stopped")

    async def _poll(self) -> None:
        while self._handler is not None:
            await asyncio.sleep(self.poll_interval_seconds)
            try:
                head = await self.chain.get_block_number()
            except NetworkError as e:
                logger.warning("block_poll_failed", error=str(e))
                continue

            if self._last_seen is None or head > self._last_seen:
                self._last_seen = head
                self._dispatch(head)


class NewHeadsBlockWatcher(BlockSource):
    """Subscribes to ``newHeads`` over a node WebSocket endpoint."""

    def __init__(self, ws_url: str, connect_timeout_seconds: float = 15.0):
        super().__init__()
        self.ws_url = ws_url
        self.connect_timeout_seconds = connect_timeout_seconds
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._subscription_id: Optional[str] = None

    async def subscribe(self, handler: BlockHandler) -> None:
        if self._handler is not None:
            raise RuntimeError("Block watcher already has a subscriber")

        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(self.ws_url, ping_interval=30, ping_timeout=10),
                timeout=self.connect_timeout_seconds,
            )
            await self._ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": 1,
                "method": "eth_subscribe",
                "params": ["newHeads"],
            }))
            reply = json.loads(await asyncio.wait_for(
                self._ws.recv(), timeout=self.connect_timeout_seconds,
            ))
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            raise NetworkError(f"Failed to subscribe to newHeads at {self.ws_url}: {e}")

        if "error" in reply:
            await self._ws.close()
            raise NetworkError(f"newHeads subscription rejected: {reply['error']}")

        self._subscription_id = reply.get("result")
        self._handler = handler
        self._reader_task = asyncio.create_task(self._read())
        logger.info("newheads_subscribed", ws_url=self.ws_url, subscription=self._subscription_id)

    def unsubscribe(self) -> None:
        if self._handler is None:
            return
        self._handler = None
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        logger.info("newheads_unsubscribed", subscription=self._subscription_id)

    async def _read(self) -> None:
        try:
            async for message in self._ws:
                payload = json.loads(message)
                params = payload.get("params") or {}
                if params.get("subscription") != self._subscription_id:
                    continue
                head = params.get("result") or {}
                if "number" in head:
                    self._dispatch(int(head["number"], 16))
        except websockets.ConnectionClosed as e:
            logger.error("newheads_connection_closed", error=str(e))
        finally:
            await self._ws.close()
