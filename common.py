# common.py - 公共工具：消息封包、peer id、ICE 配置、日志

import binascii
import json
import logging
import os

MAX_PARTICIPANTS = 2  # 一对一通话

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8765
DEFAULT_STUN = "stun:stun.l.google.com:19302"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

# client -> server
JOIN_SESSION = "join-session"
LIST_PEERS = "list-peers"
SIGNAL = "signal"
LEAVE = "leave"

# server -> client
CONNECTED = "connected"
SESSION_JOINED = "session-joined"
SESSION_FULL = "session-full"
PARTICIPANT_JOINED = "participant-joined"
PARTICIPANT_LEFT = "participant-left"
PEER_LIST = "peer-list"
SIGNAL_ERROR = "signal-error"
ERROR = "error"


def new_peer_id() -> str:
    return binascii.hexlify(os.urandom(8)).decode()


def encode(event: str, data=None) -> str:
    return json.dumps({"event": event, "data": data})


def decode(raw):
    """解析一帧 {"event": ..., "data": ...}，格式不对抛 ValueError"""
    if isinstance(raw, bytes):
        raw = raw.decode()
    msg = json.loads(raw)  # JSONDecodeError 是 ValueError 的子类
    if not isinstance(msg, dict) or not isinstance(msg.get("event"), str):
        raise ValueError("frame must be an object with a string 'event'")
    return msg["event"], msg.get("data")


def ice_servers(stun=None, turn=None, turn_user=None, turn_pass=None):
    servers = []
    if stun:
        servers.append({"urls": [stun]})
    # TURN 没有账号密码就没法用
    if turn and turn_user and turn_pass:
        servers.append({
            "urls": [turn],
            "username": turn_user,
            "credential": turn_pass,
        })
    return servers


def add_ice_arguments(parser, stun_default=DEFAULT_STUN):
    parser.add_argument("--stun", default=stun_default, help="STUN url")
    parser.add_argument("--turn", help="TURN url, e.g. turn:your-vps:2025?transport=udp")
    parser.add_argument("--turn-user", help="TURN username")
    parser.add_argument("--turn-pass", help="TURN password")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])


def setup_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()]
    )
