"""Tests for the command line caller."""
import json
from unittest import mock

import pytest

from caller import Call, candidate_from_dict


class RecordingSocket:
    def __init__(self):
        self.sent = []

    async def send(self, msg):
        self.sent.append(json.loads(msg))


def test_candidate_from_browser_dict():
    c = candidate_from_dict({
        "candidate": "candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    })

    assert c.ip == "192.168.1.2"
    assert c.port == 50000
    assert c.type == "host"
    assert c.sdpMid == "0"
    assert c.sdpMLineIndex == 0


def test_end_of_candidates():
    assert candidate_from_dict({"candidate": ""}) is None
    assert candidate_from_dict(None) is None


@pytest.mark.asyncio
async def test_first_arrival_waits_then_offers():
    call = Call(RecordingSocket(), [])
    with mock.patch.object(Call, "offer") as offer:
        await call.dispatch("session-joined", {"participant_count": 1, "self_id": "me"})
        assert call.initiator is True
        assert call.ws.sent == []

        await call.dispatch("participant-joined", "peer")
        offer.assert_awaited_once_with("peer")


@pytest.mark.asyncio
async def test_second_arrival_asks_for_peers():
    call = Call(RecordingSocket(), [])
    with mock.patch.object(Call, "_create_pc") as create_pc:
        await call.dispatch("session-joined", {"participant_count": 2, "self_id": "me"})
        assert call.ws.sent == [{"event": "list-peers", "data": None}]

        await call.dispatch("peer-list", ["peer"])
        assert call.remote_id == "peer"
        create_pc.assert_called_once()


@pytest.mark.asyncio
async def test_session_full_ends_call():
    call = Call(RecordingSocket(), [])

    assert await call.dispatch("session-full", None) == 1
    assert await call.dispatch("error", {"error": "bad_join"}) is None


@pytest.mark.asyncio
async def test_peer_left_makes_us_initiator():
    call = Call(RecordingSocket(), [])
    call.remote_id = "peer"

    await call.dispatch("participant-left", "peer")

    assert call.initiator is True
    assert call.remote_id is None
    assert call.pc is None


@pytest.mark.asyncio
async def test_answer_without_offer_is_ignored():
    call = Call(RecordingSocket(), [])

    await call.dispatch("signal", {"type": "answer", "from": "peer", "answer": {"sdp": "", "type": "answer"}})

    assert call.pc is None
    assert call.ws.sent == []


@pytest.mark.asyncio
async def test_offer_is_sent_to_remote():
    call = Call(RecordingSocket(), [])
    call.self_id = "me"
    try:
        await call.offer("peer")
    finally:
        await call.hangup()

    [msg] = call.ws.sent
    assert msg["event"] == "signal"
    assert msg["data"]["type"] == "offer"
    assert msg["data"]["target"] == "peer"
    assert msg["data"]["offer"]["type"] == "offer"
    assert "m=application" in msg["data"]["offer"]["sdp"]


def delivered(call):
    """Last signal sent by ``call`` as the relay would hand it to the target."""
    data = dict(call.ws.sent[-1]["data"])
    data.pop("target")
    data["from"] = call.self_id
    return data


@pytest.mark.asyncio
async def test_offer_answer_exchange_between_two_calls():
    a = Call(RecordingSocket(), [])
    a.self_id = "A"
    b = Call(RecordingSocket(), [])
    b.self_id = "B"
    try:
        await a.offer("B")
        await b.dispatch("signal", delivered(a))

        assert b.remote_id == "A"
        [msg] = b.ws.sent
        assert msg["data"]["type"] == "answer"
        assert msg["data"]["target"] == "A"

        await a.dispatch("signal", delivered(b))

        assert a.pc.signalingState == "stable"
        assert b.pc.signalingState == "stable"
    finally:
        await a.hangup()
        await b.hangup()


@pytest.mark.asyncio
async def test_browser_candidate_is_added():
    call = Call(RecordingSocket(), [])
    call.remote_id = "peer"
    call._create_pc()
    try:
        with mock.patch.object(call.pc, "addIceCandidate") as add:
            await call.handle_signal({
                "type": "ice-candidate",
                "from": "peer",
                "candidate": {
                    "candidate": "candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host",
                    "sdpMid": "0",
                    "sdpMLineIndex": 0,
                },
            })
            await call.handle_signal({"type": "ice-candidate", "from": "peer", "candidate": {"candidate": ""}})

        add.assert_awaited_once()
        candidate = add.await_args.args[0]
        assert (candidate.ip, candidate.port, candidate.sdpMid) == ("192.168.1.2", 50000, "0")
    finally:
        await call.hangup()
