"""Small runtime helpers."""

from __future__ import annotations

import ipaddress
import logging
import socket
from collections.abc import Callable
from typing import Any

import psutil

__all__ = ["go_with_recovery", "get_local_ip"]

logger = logging.getLogger(__name__)


def go_with_recovery(
    func: Callable[[], Any],
    recover_fn: Callable[[BaseException | None], Any] | None = None,
) -> None:
    """Run ``func``, swallowing and logging any exception it raises.

    ``recover_fn`` (if given) is always called afterwards with the exception
    raised, or None when ``func`` completed normally.
    """
    caught: BaseException | None = None
    try:
        func()
    except Exception as exc:
        caught = exc
    if recover_fn is not None:
        recover_fn(caught)
    if caught is not None:
        logger.error(
            "panic in the recoverable goroutine: %r",
            caught,
            exc_info=(type(caught), caught, caught.__traceback__),
        )


_IPV4_BROADCAST = ipaddress.IPv4Address("255.255.255.255")


def _is_global_unicast(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    if ip.is_unspecified or ip.is_loopback or ip.is_multicast or ip.is_link_local:
        return False
    return ip != _IPV4_BROADCAST


def get_local_ip() -> str:
    """Return a non-loopback, non-unspecified local IP, or "" if there is none."""
    try:
        interfaces = psutil.net_if_addrs()
    except OSError:
        return ""
    for addrs in interfaces.values():
        for addr in addrs:
            if addr.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            text = addr.address.split("%", 1)[0]
            try:
                ip = ipaddress.ip_address(text)
            except ValueError:
                continue
            if _is_global_unicast(ip):
                return str(ip)
    return ""