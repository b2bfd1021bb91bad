import ipaddress
import socket
from collections import namedtuple
from unittest import mock

from ngmonitoring.misc import get_local_ip, go_with_recovery

Addr = namedtuple("Addr", "family address netmask broadcast ptp")


def test_recovery_swallows_exception_and_reports_it():
    seen = []

    def boom():
        raise ValueError("bad")

    go_with_recovery(boom, seen.append)
    assert len(seen) == 1
    assert isinstance(seen[0], ValueError)
    assert str(seen[0]) == "bad"


def test_recovery_called_with_none_on_success():
    seen = []
    ran = []
    go_with_recovery(lambda: ran.append(1), seen.append)
    assert ran == [1]
    assert seen == [None]


def test_recovery_without_handler_logs(caplog):
    def boom():
        raise RuntimeError("oops")

    with caplog.at_level("ERROR"):
        go_with_recovery(boom, None)
    assert "panic in the recoverable goroutine" in caplog.text


def test_get_local_ip_skips_loopback_and_link_local():
    fake = {
        "lo": [Addr(socket.AF_INET, "127.0.0.1", None, None, None)],
        "eth0": [
            Addr(socket.AF_INET6, "fe80::1%eth0", None, None, None),
            Addr(socket.AF_INET, "10.0.0.5", None, None, None),
        ],
    }
    with mock.patch("psutil.net_if_addrs", return_value=fake):
        assert get_local_ip() == "10.0.0.5"


def test_get_local_ip_returns_empty_when_none():
    fake = {"lo": [Addr(socket.AF_INET, "127.0.0.1", None, None, None)]}
    with mock.patch("psutil.net_if_addrs", return_value=fake):
        assert get_local_ip() == ""


def test_get_local_ip_real_interfaces_invariant():
    ip = get_local_ip()
    if ip == "":
        assert ip == ""
    else:
        parsed = ipaddress.ip_address(ip)
        assert not parsed.is_loopback
        assert not parsed.is_unspecified