import argparse
import asyncio
import logging
import sys

import websockets
from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from aiortc.sdp import candidate_from_sdp

from common import (
    CONNECTED,
    ERROR,
    JOIN_SESSION,
    LEAVE,
    LIST_PEERS,
    PARTICIPANT_JOINED,
    PARTICIPANT_LEFT,
    PEER_LIST,
    SESSION_FULL,
    SESSION_JOINED,
    SIGNAL,
    SIGNAL_ERROR,
    add_ice_arguments,
    decode,
    encode,
    ice_servers as build_ice_servers,
    setup_logging,
)

logger = logging.getLogger("caller")


def candidate_from_dict(d):
    """Browser-style candidate dict -> RTCIceCandidate, None for end-of-candidates."""
    sdp = (d or {}).get("candidate")
    if not sdp:
        return None
    c = candidate_from_sdp(sdp.split(":", 1)[1])
    c.sdpMid = d.get("sdpMid")
    c.sdpMLineIndex = d.get("sdpMLineIndex")
    return c


class Call:
    """One side of a two-party call, driven by relay events.

    The first arrival in a session waits and sends the offer once somebody
    joins; the second arrival looks up its peer and answers.
    """

    def __init__(self, ws, ice_servers, player=None, record_to=None):
        self.ws = ws
        self.ice_servers = ice_servers
        self.player = player
        self.record_to = record_to
        self.pc = None
        self.recorder = None
        self.remote_id = None
        self.self_id = None
        self.initiator = False

    async def send(self, event, data=None):
        await self.ws.send(encode(event, data))

    def _create_pc(self):
        config = RTCConfiguration(iceServers=[RTCIceServer(**s) for s in self.ice_servers])
        pc = RTCPeerConnection(config)
        self.recorder = MediaRecorder(self.record_to) if self.record_to else MediaBlackhole()

        if self.player and self.player.audio:
            pc.addTrack(self.player.audio)
        if self.player and self.player.video:
            pc.addTrack(self.player.video)

        @pc.on("track")
        def on_track(track):
            logger.info("Receiving %s track from %s", track.kind, self.remote_id)
            self.recorder.addTrack(track)

        @pc.on("datachannel")
        def on_datachannel(ch):
            logger.info("DataChannel received: %s", ch.label)

            @ch.on("message")
            def on_message(msg):
                logger.info("Message from peer: %s", str(msg)[:100])

        @pc.on("connectionstatechange")
        async def on_state():
            logger.info("Connection state: %s", pc.connectionState)
            if pc.connectionState == "connected":
                await self.recorder.start()

        @pc.on("signalingstatechange")
        def on_sig():
            logger.debug("Signaling state: %s", pc.signalingState)

        self.pc = pc
        return pc

    async def offer(self, remote_id):
        self.remote_id = remote_id
        pc = self._create_pc()
        if not self.player:
            # 没有音视频也要有东西可协商
            channel = pc.createDataChannel("chat")

            @channel.on("open")
            def on_open():
                channel.send(f"hello from {self.self_id}")

        await pc.setLocalDescription(await pc.createOffer())
        await self.send(SIGNAL, {
            "type": "offer",
            "offer": {"sdp": pc.localDescription.sdp, "type": pc.localDescription.type},
            "target": remote_id,
        })
        logger.info("Sent offer to %s", remote_id)

    async def handle_signal(self, data):
        kind = data.get("type")
        if self.remote_id is None:
            self.remote_id = data.get("from")

        if kind == "offer":
            if self.pc is None:
                self._create_pc()
            desc = data["offer"]
            await self.pc.setRemoteDescription(RTCSessionDescription(sdp=desc["sdp"], type=desc["type"]))
            await self.pc.setLocalDescription(await self.pc.createAnswer())
            await self.send(SIGNAL, {
                "type": "answer",
                "answer": {"sdp": self.pc.localDescription.sdp, "type": self.pc.localDescription.type},
                "target": self.remote_id,
            })
            logger.info("Sent answer to %s", self.remote_id)
        elif kind == "answer":
            if self.pc is None:
                logger.warning("Answer from %s without an offer, ignoring", data.get("from"))
                return
            desc = data["answer"]
            await self.pc.setRemoteDescription(RTCSessionDescription(sdp=desc["sdp"], type=desc["type"]))
            logger.info("Received answer from %s", self.remote_id)
        elif kind == "ice-candidate":
            candidate = candidate_from_dict(data.get("candidate"))
            if self.pc is not None and candidate is not None:
                await self.pc.addIceCandidate(candidate)
                logger.debug("Added remote ICE candidate")
        else:
            logger.warning("Unknown signal type: %s", kind)

    async def hangup(self):
        if self.recorder is not None:
            await self.recorder.stop()
            self.recorder = None
        if self.pc is not None:
            await self.pc.close()
            self.pc = None
            logger.info("PeerConnection closed")
        self.remote_id = None

    async def dispatch(self, event, data):
        """Handle one relay event; returns an exit status when the call is over."""
        if event == SESSION_FULL:
            logger.error("Session is full")
            return 1
        if event == SESSION_JOINED:
            self.self_id = data["self_id"]
            logger.info("In session (%d/2 users)", data["participant_count"])
            if data["participant_count"] == 1:
                self.initiator = True
                logger.info("Waiting for someone to join...")
            else:
                self.initiator = False
                await self.send(LIST_PEERS)
        elif event == PEER_LIST:
            if data and self.remote_id is None:
                self.remote_id = data[0]
                self._create_pc()
                logger.info("Remote peer is %s, waiting for offer", self.remote_id)
        elif event == PARTICIPANT_JOINED:
            logger.info("Peer joined: %s", data)
            if self.initiator:
                await self.offer(data)
            else:
                self.remote_id = data
        elif event == PARTICIPANT_LEFT:
            logger.info("Peer left: %s", data)
            await self.hangup()
            # 留下来的一方负责给下一个人发 offer
            self.initiator = True
        elif event == SIGNAL:
            await self.handle_signal(data)
        elif event in (SIGNAL_ERROR, ERROR):
            logger.warning("Relay reported %s: %s", event, data)
        return None


async def run(args):
    player = MediaPlayer(args.play_from) if args.play_from else None
    status = 0
    async with websockets.connect(args.signaling) as ws:
        logger.info("Connected to signaling server: %s", args.signaling)
        event, welcome = decode(await ws.recv())
        if event != CONNECTED:
            logger.error("Unexpected first message: %s", event)
            return 1

        servers = build_ice_servers(args.stun, args.turn, args.turn_user, args.turn_pass)
        servers = servers or welcome.get("ice_servers", [])
        logger.debug("Using ICE servers: %s", servers)

        call = Call(ws, servers, player=player, record_to=args.record_to)
        call.self_id = welcome["self_id"]
        await call.send(JOIN_SESSION, args.session)
        logger.debug("Join request sent for session %s", args.session)

        try:
            async for raw in ws:
                event, data = decode(raw)
                logger.debug("Recv signaling: %s", event)
                status = await call.dispatch(event, data)
                if status is not None:
                    break
        except websockets.ConnectionClosed:
            logger.info("Signaling server closed the connection")
        finally:
            await call.hangup()

        try:
            await call.send(LEAVE)
        except websockets.ConnectionClosed:
            pass
    return status or 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--signaling", required=True, help="ws://your-vps-ip:8765")
    parser.add_argument("--session", required=True, help="session id (any string)")
    parser.add_argument("--play-from", help="audio/video file or device to send")
    parser.add_argument("--record-to", help="write the remote media to this file")
    add_ice_arguments(parser, stun_default=None)
    args = parser.parse_args()

    setup_logging(args.log_level)
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        pass
