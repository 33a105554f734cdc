# transport.py - websocket 通道：每个连接一个 peer id，按事件名分发消息
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import websockets

from common import ERROR, LEAVE, decode, encode, new_peer_id

logger = logging.getLogger("transport")

CONNECT = "connect"
DISCONNECT = "disconnect"

OUTBOX_SIZE = 64  # 对端不读的时候最多积压这么多帧


@dataclass
class Connection:
    peer_id: str
    websocket: object
    session_id: Optional[str] = None
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(OUTBOX_SIZE))
    alive: bool = True


class ChannelTransport:
    def __init__(self):
        self.connections: dict[str, Connection] = {}
        self.handlers = {}
        self.connect_callbacks = []
        self.disconnect_callbacks = []

    def __len__(self):
        return len(self.connections)

    def on(self, event):
        """Register ``handler(connection, data)`` for a named inbound message.

        ``connect`` and ``disconnect`` are lifecycle callbacks taking only
        the connection.
        """
        def register(fn):
            if event == CONNECT:
                self.connect_callbacks.append(fn)
            elif event == DISCONNECT:
                self.disconnect_callbacks.append(fn)
            else:
                self.handlers[event] = fn
            return fn
        return register

    def is_connected(self, peer_id):
        return peer_id in self.connections

    def connection(self, peer_id):
        return self.connections.get(peer_id)

    def send(self, peer_id, event, data=None):
        # 只入队，不等对方收到
        conn = self.connections.get(peer_id)
        if conn is None or not conn.alive:
            logger.debug("Drop %s for %s, not connected", event, peer_id)
            return False
        try:
            conn.outbox.put_nowait(encode(event, data))
        except asyncio.QueueFull:
            logger.debug("Drop %s for %s, outbox full", event, peer_id)
            return False
        return True

    async def handler(self, ws):
        conn = Connection(new_peer_id(), ws)
        self.connections[conn.peer_id] = conn
        logger.info("Peer %s connected from %s", conn.peer_id, getattr(ws, "remote_address", None))
        writer = asyncio.create_task(self._writer(conn))
        try:
            for cb in self.connect_callbacks:
                await cb(conn)
            async for raw in ws:
                try:
                    event, data = decode(raw)
                except ValueError:
                    logger.warning("Invalid frame from %s", conn.peer_id)
                    self.send(conn.peer_id, ERROR, {"error": "invalid_json"})
                    continue

                if event == LEAVE:
                    break
                fn = self.handlers.get(event)
                if fn is None:
                    logger.warning("Unknown event %r from %s", event, conn.peer_id)
                    self.send(conn.peer_id, ERROR, {"error": "unknown_event", "event": event})
                    continue
                await fn(conn, data)
        except websockets.ConnectionClosed:
            pass
        finally:
            try:
                await self.disconnect(conn)
            finally:
                writer.cancel()

    async def disconnect(self, conn):
        # 先摘掉连接，之后到达的 join / signal 都会当作对方不在线
        if self.connections.get(conn.peer_id) is not conn:
            return
        del self.connections[conn.peer_id]
        logger.info("Peer %s disconnected", conn.peer_id)
        for cb in self.disconnect_callbacks:
            await cb(conn)

    async def _writer(self, conn):
        while True:
            msg = await conn.outbox.get()
            try:
                await conn.websocket.send(msg)
            except websockets.ConnectionClosed:
                logger.debug("Send to %s failed, connection closed", conn.peer_id)
                conn.alive = False
                return
