import ipaddress
import logging

import pytest
import yaml

from limaconf.limayaml.model import (
    TCP,
    X8664,
    Disk,
    Image,
    Kernel,
    LimaYAML,
    Mount,
    Network,
    NineP,
    PortForward,
    Probe,
    Rosetta,
    from_mapping,
    to_mapping,
)


def _sample():
    return LimaYAML(
        vm_type="qemu",
        arch=X8664,
        images=[
            Image(
                location="https://example.com/image.img",
                arch=X8664,
                kernel=Kernel(location="/boot/kernel", cmdline="console=ttyS0"),
            )
        ],
        cpus=2,
        mounts=[Mount(location="~", writable=True, nine_p=NineP(msize="128KiB"))],
        port_forwards=[
            PortForward(guest_ip=ipaddress.ip_address("127.0.0.1"), guest_port_range=(80, 80), proto=TCP)
        ],
        networks=[Network(lima="shared", vz_nat=False)],
        env={"ONE": "Eins"},
        dns=[ipaddress.ip_address("1.1.1.1")],
        rosetta=Rosetta(enabled=True),
        additional_disks=[Disk(name="data", fs_args=["-i", "size=512"])],
        probes=[Probe(script="#!/bin/true")],
        propagate_proxy_env=False,
    )


def test_round_trip():
    config = _sample()
    assert from_mapping(to_mapping(config)) == config


def test_round_trip_through_yaml_text():
    config = _sample()
    text = yaml.safe_dump(to_mapping(config))
    assert from_mapping(yaml.safe_load(text)) == config


def test_empty_document():
    assert from_mapping(None) == LimaYAML()
    assert from_mapping({}) == LimaYAML()


def test_empty_config_keeps_only_images():
    assert to_mapping(LimaYAML()) == {"images": []}


def test_disk_as_string():
    config = from_mapping({"additionalDisks": ["name"]})
    assert config.additional_disks == [Disk(name="name")]
    disk = config.additional_disks[0]
    assert disk.format is None and disk.fs_type is None and disk.fs_args == []


def test_disk_as_mapping():
    config = from_mapping(
        {"additionalDisks": [{"name": "name", "format": False, "fsType": "xfs", "fsArgs": ["-i", "size=512"]}]}
    )
    disk = config.additional_disks[0]
    assert disk.name == "name"
    assert disk.format is False
    assert disk.fs_type == "xfs"
    assert disk.fs_args == ["-i", "size=512"]


def test_image_fields_are_inline():
    mapping = to_mapping(_sample())
    image = mapping["images"][0]
    assert image["location"] == "https://example.com/image.img"
    assert image["kernel"]["cmdline"] == "console=ttyS0"


def test_false_pointer_is_kept():
    mapping = to_mapping(LimaYAML(propagate_proxy_env=False))
    assert mapping["propagateProxyEnv"] is False


def test_port_range_decoded_as_pair():
    config = from_mapping({"portForwards": [{"guestPortRange": [1, 2]}]})
    assert config.port_forwards[0].guest_port_range == (1, 2)
    assert config.port_forwards[0].host_port_range == (0, 0)


def test_probe_keys_are_lowercase():
    config = from_mapping({"probes": [{"script": "#!/bin/false", "hint": "wait"}]})
    assert config.probes[0] == Probe(script="#!/bin/false", hint="wait")


def test_wrong_type_raises():
    with pytest.raises(ValueError, match="cpus"):
        from_mapping({"cpus": "four"})


def test_bad_ip_raises():
    with pytest.raises(ValueError, match="dns"):
        from_mapping({"dns": ["not-an-ip"]})


def test_bad_port_range_raises():
    with pytest.raises(ValueError, match="guestPortRange"):
        from_mapping({"portForwards": [{"guestPortRange": [1]}]})


def test_switch_port_range_checked():
    with pytest.raises(ValueError, match="switchPort"):
        from_mapping({"networks": [{"switchPort": 70000}]})


def test_unknown_field_warns(caplog):
    caplog.set_level(logging.WARNING)
    config = from_mapping({"bogusField": 1, "cpus": 3})
    assert config.cpus == 3
    assert "bogusField" in caplog.text


def test_non_mapping_document_raises():
    with pytest.raises(ValueError):
        from_mapping(["a", "b"])