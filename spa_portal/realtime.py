"""
Supabase Realtime change feed over the Phoenix channel websocket (aiohttp).

A subscription is a scoped resource: entering the context joins the channel,
leaving it (normally, on error or on cancellation) sends phx_leave, stops the
heartbeat and closes the socket.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import aiohttp

from .config import REALTIME_HEARTBEAT_SECONDS, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)


class RealtimeError(Exception):
    """The change feed could not be joined or dropped unexpectedly"""


@dataclass
class ChangeEvent:
    event_type: str
    table: str
    new: dict = field(default_factory=dict)
    old: dict = field(default_factory=dict)

    def changed(self, column: str) -> bool:
        """True only when both row versions carry the column and it differs"""
        if column not in self.new or column not in self.old:
            return False
        return self.new[column] != self.old[column]


def parse_change(message: dict) -> Optional[ChangeEvent]:
    """Extract a ChangeEvent from a postgres_changes channel message"""
    if message.get("event") != "postgres_changes":
        return None
    data = (message.get("payload") or {}).get("data") or {}
    event_type = data.get("type") or data.get("eventType")
    if not event_type:
        return None
    return ChangeEvent(
        event_type=event_type,
        table=data.get("table", ""),
        new=data.get("record") or {},
        old=data.get("old_record") or {},
    )


def websocket_url(base_url: str, api_key: str) -> str:
    ws_base = base_url.replace("https://", "wss://").replace("http://", "ws://")
    return f"{ws_base}/realtime/v1/websocket?apikey={api_key}&vsn=1.0.0"


class RealtimeSubscription:
    """One channel joined to a single postgres_changes filter"""

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        topic: str,
        table: str,
        event: str = "UPDATE",
        filter: Optional[str] = None,
        schema: str = "public",
        access_token: Optional[str] = None,
        heartbeat_seconds: float = REALTIME_HEARTBEAT_SECONDS,
    ):
        self.url = url
        self.api_key = api_key
        self.topic = f"realtime:{topic}"
        self.table = table
        self.event = event
        self.filter = filter
        self.schema = schema
        self.access_token = access_token
        self.heartbeat_seconds = heartbeat_seconds
        self._refs = itertools.count(1)
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._closing = False

    def _message(self, topic: str, event: str, payload: dict) -> dict:
        return {"topic": topic, "event": event, "payload": payload, "ref": str(next(self._refs))}

    def join_payload(self) -> dict:
        change: dict[str, Any] = {"event": self.event, "schema": self.schema, "table": self.table}
        if self.filter:
            change["filter"] = self.filter
        payload: dict[str, Any] = {"config": {"postgres_changes": [change]}}
        if self.access_token:
            payload["access_token"] = self.access_token
        return payload

    async def __aenter__(self) -> "RealtimeSubscription":
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(websocket_url(self.url, self.api_key))
            await self._ws.send_json(self._message(self.topic, "phx_join", self.join_payload()))
            await self._await_join_reply()
        except BaseException:
            await self._close()
            raise
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"📡 Subscribed to {self.table} {self.event} ({self.filter or 'all rows'})")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._close()
        logger.info(f"📴 Unsubscribed from {self.topic}")

    async def _await_join_reply(self):
        while True:
            msg = await self._ws.receive()
            if msg.type != aiohttp.WSMsgType.TEXT:
                raise RealtimeError(f"Channel closed while joining {self.topic}")
            data = json.loads(msg.data)
            if data.get("topic") == self.topic and data.get("event") == "phx_reply":
                status = (data.get("payload") or {}).get("status")
                if status != "ok":
                    raise RealtimeError(f"Join refused for {self.topic}: {data.get('payload')}")
                return

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            await self._ws.send_json(self._message("phoenix", "heartbeat", {}))

    async def _close(self):
        self._closing = True
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            try:
                await self._heartbeat
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Heartbeat for {self.topic} ended with {e}")
            self._heartbeat = None
        if self._ws is not None and not self._ws.closed:
            try:
                await self._ws.send_json(self._message(self.topic, "phx_leave", {}))
            except Exception as e:
                logger.debug(f"phx_leave not delivered for {self.topic}: {e}")
            await self._ws.close()
        self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        if self._ws is None:
            raise RealtimeError("Subscription used outside its context")
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                data = json.loads(msg.data)
                if data.get("topic") != self.topic:
                    continue
                if data.get("event") == "phx_error":
                    raise RealtimeError(f"Channel error on {self.topic}")
                change = parse_change(data)
                if change is not None:
                    yield change
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise RealtimeError(f"Change feed for {self.topic} failed: {msg.data}")
        # The socket iterator stops quietly on CLOSE/CLOSING/CLOSED
        if not self._closing:
            raise RealtimeError(f"Change feed for {self.topic} dropped")


class RealtimeClient:
    """Factory for change-feed subscriptions against one project"""

    def __init__(self, url: str = SUPABASE_URL, api_key: Optional[str] = SUPABASE_SERVICE_ROLE_KEY):
        self.url = url
        self.api_key = api_key or ""

    def subscribe(
        self,
        topic: str,
        *,
        table: str,
        event: str = "UPDATE",
        filter: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> RealtimeSubscription:
        return RealtimeSubscription(
            url=self.url,
            api_key=self.api_key,
            topic=topic,
            table=table,
            event=event,
            filter=filter,
            access_token=access_token,
        )
