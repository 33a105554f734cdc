# registry.py - 房间登记表：session -> 参与者，一个房间最多两人
import asyncio
import logging
from dataclasses import dataclass

from common import (
    MAX_PARTICIPANTS,
    PARTICIPANT_JOINED,
    PARTICIPANT_LEFT,
    SESSION_FULL,
    SIGNAL,
    SIGNAL_ERROR,
)

logger = logging.getLogger("registry")


@dataclass(frozen=True)
class JoinResult:
    session_id: str
    participant_count: int
    self_id: str


class SessionRegistry:
    """Maps call sessions to the participants in them.

    ``transport`` is anything with ``send(peer_id, event, data)`` (fire and
    forget) and ``is_connected(peer_id)``. Every operation runs under one
    lock, so a join, a route and a leave never interleave.
    """

    def __init__(self, transport, capacity=MAX_PARTICIPANTS, strict_routing=True):
        self.transport = transport
        self.capacity = capacity
        self.strict_routing = strict_routing
        # session_id -> 参与者列表，按加入顺序（先到的是发起方）
        self.sessions: dict[str, list[str]] = {}
        # participant -> session_id
        self.members: dict[str, str] = {}
        self.lock = asyncio.Lock()

    def __len__(self):
        return len(self.sessions)

    def __contains__(self, session_id):
        return session_id in self.sessions

    def session_of(self, participant):
        return self.members.get(participant)

    def members_of(self, session_id):
        return tuple(self.sessions.get(session_id, ()))

    async def join(self, session_id: str, participant: str):
        async with self.lock:
            if not self.transport.is_connected(participant):
                # 断线比 join 先处理完了，什么都不留
                logger.info("Peer %s gone before joining %s", participant, session_id)
                return None

            current = self.members.get(participant)
            if current is not None:
                if current != session_id:
                    logger.warning("Peer %s already in %s, ignoring join of %s",
                                   participant, current, session_id)
                return JoinResult(current, len(self.sessions[current]), participant)

            users = self.sessions.get(session_id, [])
            if len(users) >= self.capacity:
                logger.warning("Session %s is full, rejecting %s", session_id, participant)
                self.transport.send(participant, SESSION_FULL)
                return None

            if not users:
                self.sessions[session_id] = users
                logger.info("Session %s created", session_id)
            users.append(participant)
            self.members[participant] = session_id
            logger.info("Peer %s joined %s (%d/%d)",
                        participant, session_id, len(users), self.capacity)

            self._broadcast_except(session_id, participant, PARTICIPANT_JOINED, participant)
            return JoinResult(session_id, len(users), participant)

    async def route(self, sender: str, target: str, payload: dict):
        async with self.lock:
            if not self.transport.is_connected(target):
                logger.debug("Signal %s -> %s dropped, target not connected",
                             sender, target)
                return False

            if self.strict_routing:
                session_id = self.members.get(sender)
                if session_id is None or self.members.get(target) != session_id:
                    logger.warning("Signal %s -> %s rejected, not in the same session",
                                   sender, target)
                    self.transport.send(sender, SIGNAL_ERROR,
                                        {"reason": "not-co-located", "target": target})
                    return False

            logger.debug("Signal %s -> %s: %s", sender, target, payload.get("type"))
            return self.transport.send(target, SIGNAL, {**payload, "from": sender})

    async def list_peers(self, session_id: str, requester: str):
        async with self.lock:
            users = self.sessions.get(session_id, ())
            return iter([p for p in users if p != requester])

    async def leave(self, participant: str):
        async with self.lock:
            session_id = self.members.pop(participant, None)
            if session_id is None:
                return None

            users = self.sessions[session_id]
            users.remove(participant)
            logger.info("Peer %s left %s, %d remaining", participant, session_id, len(users))

            if users:
                self._broadcast_except(session_id, participant, PARTICIPANT_LEFT, participant)
            else:
                del self.sessions[session_id]
                logger.info("Session %s deleted (empty)", session_id)
            return session_id

    async def broadcast_except(self, session_id, excluded, event, data=None):
        async with self.lock:
            return self._broadcast_except(session_id, excluded, event, data)

    def _broadcast_except(self, session_id, excluded, event, data):
        sent = 0
        for peer in self.sessions.get(session_id, ()):
            if peer != excluded and self.transport.send(peer, event, data):
                sent += 1
        return sent
