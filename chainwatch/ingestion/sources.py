"""
Event Sources

External providers of raw transaction/trace records. A source yields raw
records lazily and checks the stop signal between records; it never
interprets them (normalization happens in the adapter).

- IterableEventSource: in-memory records or a replay list
- JsonLinesEventSource: one JSON record per line in a file
- JsonRpcEventSource: follows an Ethereum JSON-RPC node block by block
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from pathlib import Path
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)


class EventSource(ABC):
    """Base class for record providers."""

    name: str = "source"

    @abstractmethod
    def records(self, stop: asyncio.Event) -> AsyncIterator[Any]:
        """Yield raw records until exhausted or `stop` is set."""

    async def aclose(self) -> None:
        """Release any resources held by the source."""
        return None


class IterableEventSource(EventSource):
    """Replays records from a sync or async iterable."""

    name = "iterable"

    def __init__(self, records: Iterable[Any] | AsyncIterable[Any]) -> None:
        self._records = records

    async def records(self, stop: asyncio.Event) -> AsyncIterator[Any]:
        if isinstance(self._records, AsyncIterable):
            async for record in self._records:
                if stop.is_set():
                    return
                yield record
            return

        for record in self._records:
            if stop.is_set():
                return
            yield record
            # Let the consumer run between records
            await asyncio.sleep(0)


class JsonLinesEventSource(EventSource):
    """
    Replays a JSON-lines file.

    Lines that are not valid JSON are passed through as raw strings so the
    adapter reports them as malformed instead of aborting the replay.
    """

    name = "jsonl"

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def records(self, stop: asyncio.Event) -> AsyncIterator[Any]:
        with self.path.open(encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if stop.is_set():
                    return
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning("jsonl_decode_failed", path=str(self.path), line=line_number, error=str(e))
                    yield line
                await asyncio.sleep(0)


class RpcError(Exception):
    """The node answered a JSON-RPC request with an error object."""

    def __init__(self, method: str, error: Any) -> None:
        super().__init__(f"{method} failed: {error}")
        self.method = method
        self.error = error


class JsonRpcEventSource(EventSource):
    """
    Follows an Ethereum node over JSON-RPC.

    Polls eth_blockNumber, then reads every new block with
    eth_getBlockByNumber(full transactions) and yields its transactions in
    block order. Transport errors are logged and retried on the next poll.
    """

    name = "jsonrpc"

    def __init__(
        self,
        url: str,
        start_block: int | None = None,
        end_block: int | None = None,
        poll_interval: float = 2.0,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.start_block = start_block
        self.end_block = end_block
        self.poll_interval = poll_interval
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = client is None
        self._request_id = 0
        self._next_block: int | None = start_block

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        response = await self._client.post(
            self.url,
            json={"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params},
        )
        response.raise_for_status()
        body = response.json()
        if body.get("error") is not None:
            raise RpcError(method, body["error"])
        return body.get("result")

    async def head_block(self) -> int:
        return int(await self._call("eth_blockNumber", []), 16)

    async def fetch_block(self, number: int) -> list[dict[str, Any]]:
        """Transactions of one block, stamped with the block timestamp."""
        block = await self._call("eth_getBlockByNumber", [hex(number), True])
        if block is None:
            return []
        timestamp = block.get("timestamp")
        transactions: list[dict[str, Any]] = []
        for tx in block.get("transactions") or []:
            if isinstance(tx, dict):
                transactions.append({**tx, "timestamp": tx.get("timestamp", timestamp)})
        return transactions

    async def _wait(self, stop: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def records(self, stop: asyncio.Event) -> AsyncIterator[Any]:
        while not stop.is_set():
            try:
                head = await self.head_block()
                if self._next_block is None:
                    self._next_block = head
                    logger.info("rpc_follow_started", url=self.url, block=head)

                last = head if self.end_block is None else min(head, self.end_block)
                while self._next_block <= last and not stop.is_set():
                    number = self._next_block
                    for tx in await self.fetch_block(number):
                        yield tx
                    self._next_block = number + 1
                    logger.debug("rpc_block_read", block=number)

                if self.end_block is not None and self._next_block > self.end_block:
                    logger.info("rpc_end_block_reached", block=self.end_block)
                    return
            except (httpx.HTTPError, RpcError, ValueError) as e:
                logger.warning("rpc_poll_failed", url=self.url, block=self._next_block, error=str(e))

            await self._wait(stop)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
