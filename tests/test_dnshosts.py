from ipaddress import ip_address

import pytest

from limaconf.networks.dnshosts import (
    Record,
    Zone,
    extract_zones,
    host_ip,
    record_name,
    zone_name,
)

HOSTS = {
    "sample": "1.1.1.1",
    "another.sample": "1.2.2.1",
    "google.com": "8.8.8.8",
    "google.ae": "google.com",
    "google.ie": "google.ae",
}


@pytest.mark.parametrize(
    "host,want",
    [
        ("sample", "1.1.1.1"),
        ("another.sample", "1.2.2.1"),
        ("google.com", "8.8.8.8"),
        ("google.ae", "8.8.8.8"),
        ("google.ie", "8.8.8.8"),
        ("google.sample", None),
    ],
)
def test_host_ip(host, want):
    expected = ip_address(want) if want else None
    assert host_ip(HOSTS, host) == expected


def test_host_ip_alias_cycle_is_unresolved():
    assert host_ip({"a.x": "b.x", "b.x": "a.x"}, "a.x") is None


@pytest.mark.parametrize(
    "host,name,record",
    [
        ("", "", ""),
        ("sample", "sample", ""),
        ("another.sample", "sample.", "another"),
        ("another.sample.com", "com.", "another.sample"),
        ("a.c", "c.", "a"),
        ("a.b.c.d", "d.", "a.b.c"),
    ],
)
def test_zone_host(host, name, record):
    assert (zone_name(host), record_name(host)) == (name, record)


def _normalise(zones):
    return sorted(
        (
            zone.name,
            zone.default_ip,
            sorted((r.name, r.ip) for r in zone.records),
        )
        for zone in zones
    )


def test_extract_zones():
    hosts = {
        "google.com": "8.8.4.4",
        "local.google.com": "8.8.8.8",
        "google.ae": "google.com",
        "localhost": "127.0.0.1",
        "host.lima.internal": "192.168.5.2",
        "host.docker.internal": "host.lima.internal",
    }
    want = [
        Zone(name="ae.", records=[Record("google", ip_address("8.8.4.4"))]),
        Zone(
            name="com.",
            records=[
                Record("google", ip_address("8.8.4.4")),
                Record("local.google", ip_address("8.8.8.8")),
            ],
        ),
        Zone(
            name="internal.",
            records=[
                Record("host.docker", ip_address("192.168.5.2")),
                Record("host.lima", ip_address("192.168.5.2")),
            ],
        ),
        Zone(name="localhost", default_ip=ip_address("127.0.0.1")),
    ]
    assert _normalise(extract_zones(hosts)) == _normalise(want)


def test_extract_zones_empty():
    assert extract_zones({}) == []