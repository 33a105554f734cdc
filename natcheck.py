#!/usr/bin/env python3
# natcheck.py - 检查给客户端用的 STUN 服务器是否可达，顺便判断 NAT 类型
import argparse
import logging

import stun

from common import DEFAULT_STUN, setup_logging

logger = logging.getLogger("natcheck")

FALLBACK_STUN = [
    DEFAULT_STUN,
    "stun:stun1.l.google.com:19302",
    "stun:stun.miwifi.com:3478",
    "stun:stun.sipgate.net:3478",
]

LOCAL_PORT = 54321  # 固定本地端口，便于 NAT 比对


def parse_stun_url(url):
    """'stun:host:port' -> (host, port); port defaults to 3478."""
    scheme, sep, rest = url.partition(":")
    if scheme not in ("stun", "stuns") or not sep or not rest:
        raise ValueError(f"not a STUN url: {url!r}")
    rest = rest.split("?", 1)[0]
    host, sep, port = rest.rpartition(":")
    if not sep:
        return rest, 3478
    return host, int(port)


def probe(servers, source_port=LOCAL_PORT):
    results = []
    for host, port in servers:
        try:
            nat_type, ext_ip, ext_port = stun.get_ip_info(
                stun_host=host,
                stun_port=port,
                source_port=source_port
            )
        except Exception as e:
            logger.warning("%s:%d => FAILED (%s)", host, port, e)
            continue
        logger.info("%s:%d => %s, %s:%s", host, port, nat_type, ext_ip, ext_port)
        results.append((host, port, nat_type, ext_ip, ext_port))
    return results


def classify(results):
    ports = {r[4] for r in results if r[4]}
    if len(ports) > 1:
        return "symmetric"  # 不同 STUN 返回的端口不一致
    if len(ports) == 1:
        return "cone"
    return "blocked"


CONCLUSIONS = {
    "symmetric": "mapped ports differ -> symmetric NAT, clients will need TURN",
    "cone": "mapped port is stable -> cone NAT, STUN is enough",
    "blocked": "no STUN server answered, UDP may be blocked",
}


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--stun", action="append", help="STUN url, may repeat")
    parser.add_argument("--source-port", type=int, default=LOCAL_PORT)
    args = parser.parse_args()

    setup_logging()
    servers = [parse_stun_url(u) for u in (args.stun or FALLBACK_STUN)]
    logger.info("Local UDP port fixed at %d", args.source_port)
    verdict = classify(probe(servers, args.source_port))
    logger.info("Conclusion: %s", CONCLUSIONS[verdict])
