"""Grouping of static host entries into DNS zones."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Mapping, Union

__all__ = ["Record", "Zone", "host_ip", "zone_name", "record_name", "extract_zones"]

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass
class Record:
    """A name inside a zone and the address it resolves to."""

    name: str
    ip: IPAddress | None = None


@dataclass
class Zone:
    """A DNS zone with an optional default address and its records."""

    name: str
    default_ip: IPAddress | None = None
    records: list[Record] = field(default_factory=list)


def host_ip(hosts: Mapping[str, str], host: str) -> IPAddress | None:
    """Resolve ``host`` through ``hosts``, following name-to-name aliases."""
    seen: set[str] = set()
    while host not in seen:
        seen.add(host)
        target = hosts.get(host)
        if not target:
            return None
        try:
            return ipaddress.ip_address(target)
        except ValueError:
            host = target
    return None


def zone_name(host: str) -> str:
    """The zone a host belongs to: the part after the last dot, dot-terminated."""
    dot = host.rfind(".")
    if dot < 0:
        return host
    return host[dot + 1:] + "."


def record_name(host: str) -> str:
    """The record part of a host: everything before the last dot."""
    dot = host.rfind(".")
    if dot < 0:
        return ""
    return host[:dot]


def extract_zones(hosts: Mapping[str, str]) -> list[Zone]:
    """Group the entries of ``hosts`` into zones."""
    zones: dict[str, Zone] = {}
    for host in hosts:
        name = zone_name(host)
        zone = zones.setdefault(name, Zone(name=name))
        record = record_name(host)
        if not record:
            if zone.default_ip is None:
                zone.default_ip = host_ip(hosts, host)
        else:
            zone.records.append(Record(name=record, ip=host_ip(hosts, host)))
    return list(zones.values())