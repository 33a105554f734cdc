# server.py - 信令服务器：登记房间，转发 offer/answer/candidate
import argparse
import asyncio
import logging
import os

import websockets

from common import (
    CONNECTED,
    DEFAULT_HOST,
    DEFAULT_PORT,
    ERROR,
    JOIN_SESSION,
    LIST_PEERS,
    MAX_PARTICIPANTS,
    PEER_LIST,
    SESSION_JOINED,
    SIGNAL,
    add_ice_arguments,
    ice_servers as build_ice_servers,
    setup_logging,
)
from registry import SessionRegistry
from transport import CONNECT, DISCONNECT, ChannelTransport

logger = logging.getLogger("relay")


def create_relay(ice_servers=None, strict_routing=True, capacity=MAX_PARTICIPANTS):
    """Build a transport whose events drive a fresh registry."""
    transport = ChannelTransport()
    registry = SessionRegistry(transport, capacity=capacity, strict_routing=strict_routing)
    ice_servers = ice_servers or []

    @transport.on(CONNECT)
    async def on_connect(conn):
        transport.send(conn.peer_id, CONNECTED,
                       {"self_id": conn.peer_id, "ice_servers": ice_servers})

    @transport.on(JOIN_SESSION)
    async def on_join(conn, session_id):
        if not isinstance(session_id, str) or not session_id:
            transport.send(conn.peer_id, ERROR, {"error": "bad_join"})
            return
        result = await registry.join(session_id, conn.peer_id)
        if result is None:
            return
        conn.session_id = result.session_id
        transport.send(conn.peer_id, SESSION_JOINED, {
            "participant_count": result.participant_count,
            "self_id": result.self_id,
        })

    @transport.on(LIST_PEERS)
    async def on_list_peers(conn, session_id):
        if session_id is None:
            session_id = conn.session_id
        if not isinstance(session_id, str):
            peers = []
        else:
            peers = list(await registry.list_peers(session_id, conn.peer_id))
        transport.send(conn.peer_id, PEER_LIST, peers)

    @transport.on(SIGNAL)
    async def on_signal(conn, data):
        if not isinstance(data, dict) or not isinstance(data.get("target"), str):
            transport.send(conn.peer_id, ERROR, {"error": "bad_signal"})
            return
        payload = dict(data)
        target = payload.pop("target")
        await registry.route(conn.peer_id, target, payload)

    @transport.on(DISCONNECT)
    async def on_disconnect(conn):
        await registry.leave(conn.peer_id)

    return transport, registry


async def main(args):
    servers = build_ice_servers(args.stun, args.turn, args.turn_user, args.turn_pass)
    transport, _ = create_relay(servers, strict_routing=not args.allow_cross_session)

    async with websockets.serve(transport.handler, args.host, args.port, max_size=2**22):
        logger.info("Signal server listening on ws://%s:%d", args.host, args.port)
        logger.info("ICE servers for clients: %s", servers)
        await asyncio.Future()


def build_parser():
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default=DEFAULT_HOST)
    # argparse 会对字符串默认值做 type 转换，PORT 不是数字时报参数错误
    parser.add_argument("--port", type=int, default=os.environ.get("PORT", DEFAULT_PORT))
    parser.add_argument("--allow-cross-session", action="store_true",
                        help="forward signals to any connected peer, not just session mates")
    add_ice_arguments(parser)
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()

    setup_logging(args.log_level)
    try:
        asyncio.run(main(args))
    except KeyboardInterrupt:
        logger.info("Signal server stopped")
