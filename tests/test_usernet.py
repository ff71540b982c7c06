import ipaddress
import os

import pytest

from limaconf.networks.config import SLIRP_NETWORK, Network, NetworksConfig, default_config
from limaconf.networks.usernet import (
    ENDPOINT_SOCK,
    FD_SOCK,
    dns_ip,
    gateway_ip,
    leases,
    parse_subnet,
    pid_file,
    resolve_search_domain,
    sock,
    sock_with_directory,
    subnet,
    subnet_cidr,
)


def test_parse_subnet():
    assert str(parse_subnet(SLIRP_NETWORK)) == "192.168.5.0"


def test_dns_ip():
    net = ipaddress.ip_interface(SLIRP_NETWORK).ip
    assert dns_ip(net) == "192.168.5.3"


def test_gateway_ip():
    net = ipaddress.ip_interface(SLIRP_NETWORK).ip
    assert gateway_ip(net) == "192.168.5.2"
    assert gateway_ip("192.168.5.0") == "192.168.5.2"


def test_subnet_via_config():
    assert str(subnet(default_config(), "user-v2")) == "192.168.104.0"


def test_subnet_cidr_matches_subnet():
    config = default_config()
    assert subnet_cidr(config, "user-v2").network_address == subnet(config, "user-v2")


def test_subnet_unknown_network():
    with pytest.raises(LookupError, match="not defined"):
        subnet(NetworksConfig(), "missing")


def test_subnet_without_gateway():
    config = NetworksConfig(networks={"n": Network(mode="user-v2")})
    with pytest.raises(ValueError, match="invalid CIDR"):
        subnet_cidr(config, "n")


def test_parse_subnet_requires_prefix():
    with pytest.raises(ValueError):
        parse_subnet("192.168.5.0")
    with pytest.raises(ValueError):
        parse_subnet("not-an-ip/24")


def test_sock_paths(tmp_path):
    base = str(tmp_path)
    assert sock("foo", ENDPOINT_SOCK, base) == os.path.join(base, "foo", "foo_ep.sock")
    assert sock_with_directory(base, "", FD_SOCK) == os.path.join(base, "default_fd.sock")


def test_sock_too_long():
    with pytest.raises(ValueError, match="too long"):
        sock_with_directory("/" + "x" * 200, "n", FD_SOCK)


def test_pid_and_leases_paths(tmp_path):
    base = str(tmp_path)
    assert pid_file("user-v2", base) == os.path.join(base, "user-v2", "usernet_user-v2.pid")
    assert leases("user-v2", base) == os.path.join(base, "user-v2", "leases.json")


def test_search_domain(tmp_path):
    path = tmp_path / "resolv.conf"
    path.write_text("\nsearch test.com lima.net\nnameserver 192.168.0.100\nnameserver 8.8.8.8")
    assert resolve_search_domain(str(path)) == ["test.com", "lima.net"]


def test_empty_search_domain(tmp_path):
    path = tmp_path / "resolv.conf"
    path.write_text("\nnameserver 192.168.0.100\nnameserver 8.8.8.8")
    assert resolve_search_domain(str(path)) is None


def test_search_domain_crlf(tmp_path):
    path = tmp_path / "resolv.conf"
    path.write_bytes(b"search a.example\r\n")
    assert resolve_search_domain(str(path)) == ["a.example"]


def test_search_domain_missing_file(tmp_path):
    assert resolve_search_domain(str(tmp_path / "absent")) is None