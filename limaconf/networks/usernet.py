"""Paths and addressing for user-mode (user-v2) networks."""

from __future__ import annotations

import ipaddress
import logging
import os
import sys

from .config import IPAddress, NetworksConfig

__all__ = [
    "FD_SOCK",
    "QEMU_SOCK",
    "ENDPOINT_SOCK",
    "UNIX_PATH_MAX",
    "sock",
    "sock_with_directory",
    "pid_file",
    "subnet_cidr",
    "subnet",
    "parse_subnet",
    "gateway_ip",
    "dns_ip",
    "leases",
    "search_domains",
    "resolve_search_domain",
]

_log = logging.getLogger(__name__)

FD_SOCK = "fd"
QEMU_SOCK = "qemu"
ENDPOINT_SOCK = "ep"

UNIX_PATH_MAX = 104 if sys.platform == "darwin" else 108


def _check_length(kind: str, path: str) -> str:
    if len(path) >= UNIX_PATH_MAX:
        raise ValueError(
            f'usernet {kind} path "{path}" too long: must be less than '
            f"UNIX_PATH_MAX={UNIX_PATH_MAX} characters, but is {len(path)}"
        )
    return path


def sock(name: str, sock_type: str, networks_dir: str) -> str:
    """The socket of type ``sock_type`` for the named network."""
    return sock_with_directory(os.path.join(networks_dir, name), name, sock_type)


def sock_with_directory(directory: str, name: str, sock_type: str) -> str:
    """The socket of type ``sock_type`` for ``name`` inside ``directory``."""
    if not name:
        name = "default"
    return _check_length("socket", os.path.join(directory, f"{name}_{sock_type}.sock"))


def pid_file(name: str, networks_dir: str) -> str:
    return os.path.join(networks_dir, name, f"usernet_{name}.pid")


def _prefix_length(netmask: IPAddress | None) -> int:
    if netmask is None:
        return 0
    if netmask.version == 6:
        mapped = netmask.ipv4_mapped
        if mapped is None:
            return 0
        netmask = mapped
    bits = int(netmask)
    ones = bin(bits).count("1")
    canonical = 0xFFFFFFFF ^ ((1 << (32 - ones)) - 1)
    return ones if bits == canonical else 0


def subnet_cidr(config: NetworksConfig, name: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    """The subnet of the named network, from its gateway and netmask."""
    config.check(name)
    nw = config.networks[name]
    prefix = _prefix_length(nw.netmask)
    if nw.gateway is None:
        raise ValueError(f"invalid CIDR address: <nil>/{prefix}")
    return ipaddress.ip_network(f"{nw.gateway}/{prefix}", strict=False)


def subnet(config: NetworksConfig, name: str) -> IPAddress:
    """The network address of the named network."""
    return subnet_cidr(config, name).network_address


def parse_subnet(text: str) -> IPAddress:
    """The address part of a CIDR string such as ``192.168.5.0/24``."""
    _, sep, prefix = text.partition("/")
    if not sep or not (prefix.isascii() and prefix.isdigit()):
        raise ValueError(f"invalid CIDR address: {text}")
    try:
        return ipaddress.ip_interface(text).ip
    except ValueError as exc:
        raise ValueError(f"invalid CIDR address: {text}") from exc


def _address(value: IPAddress | str) -> IPAddress:
    return ipaddress.ip_address(value) if isinstance(value, str) else value


def gateway_ip(subnet: IPAddress | str) -> str:
    """The second address of the subnet."""
    return str(_address(subnet) + 2)


def dns_ip(subnet: IPAddress | str) -> str:
    """The third address of the subnet."""
    return str(_address(subnet) + 3)


def leases(name: str, networks_dir: str) -> str:
    """The leases file of the named network."""
    return _check_length("leases", os.path.join(networks_dir, name, "leases.json"))


def search_domains() -> list[str] | None:
    """The host's DNS search domains, or None where unknown."""
    if os.name != "nt":
        return resolve_search_domain("/etc/resolv.conf")
    return None


def resolve_search_domain(path: str) -> list[str] | None:
    """The domains of the first ``search`` line of a resolv.conf file."""
    prefix = "search "
    try:
        with open(path, encoding="utf-8", errors="replace", newline="") as handle:
            for raw in handle:
                line = raw.removesuffix("\n").removesuffix("\r")
                if line.startswith(prefix):
                    domains = line[len(prefix):].split(" ")
                    _log.debug("Using search domains: %s", domains)
                    return domains
    except OSError as exc:
        _log.error("open file error: %s", exc)
        return None
    return None