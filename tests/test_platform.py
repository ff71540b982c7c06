import getpass
import ipaddress
import os
import re

import pytest

from limaconf.limayaml.model import CopyToHost, LimaYAML, Network, PortForward
from limaconf.limayaml.platform import (
    bytes_size,
    default_containerd_archives,
    default_cpus,
    default_disk_size_as_string,
    default_guest_install_prefix,
    default_memory,
    default_memory_as_string,
    fill_copy_to_host_defaults,
    fill_port_forward_defaults,
    first_usernet_index,
    is_native_arch,
    mac_address,
    new_arch,
    new_os,
    new_vm_type,
    ram_in_bytes,
    resolve_arch,
    resolve_os,
    resolve_vm_type,
)


def test_new_os():
    assert new_os("linux") == "Linux"
    assert new_os("freebsd") == "freebsd"


@pytest.mark.parametrize(
    "given, expected",
    [("amd64", "x86_64"), ("arm64", "aarch64"), ("riscv64", "riscv64"), ("sparc", "sparc")],
)
def test_new_arch(given, expected):
    assert new_arch(given) == expected


@pytest.mark.parametrize("driver", ["vz", "qemu", "wsl2", "other"])
def test_new_vm_type_passes_name_through(driver):
    assert new_vm_type(driver) == driver


@pytest.mark.parametrize("value", [None, "", "default"])
def test_resolve_defaults(value):
    assert resolve_vm_type(value) == "qemu"
    assert resolve_os(value) == "Linux"
    assert resolve_arch(value) == resolve_arch(None)


def test_resolve_explicit_values():
    assert resolve_vm_type("vz") == "vz"
    assert resolve_os("Darwin") == "Darwin"
    assert resolve_arch("aarch64") == "aarch64"


def test_at_most_one_native_arch():
    natives = [a for a in ("x86_64", "aarch64", "armv7l", "riscv64") if is_native_arch(a)]
    assert len(natives) <= 1
    assert is_native_arch("unknown") is False


def test_mac_address_shape_and_stability():
    mac = mac_address("/some/file#0", "machine")
    assert re.fullmatch(r"([0-9a-f]{2}:){5}[0-9a-f]{2}", mac)
    assert mac.startswith("52:55:55:")
    assert mac == mac_address("/some/file#0", "machine")
    assert mac != mac_address("/some/file#1", "machine")
    assert mac != mac_address("/some/file#0", "other")


@pytest.mark.parametrize("size", [512, 1024, 4 * 1024**3, 100 * 1024**3, 1536])
def test_bytes_size_round_trip(size):
    assert ram_in_bytes(bytes_size(size)) == size


def test_ram_in_bytes_unit_spellings_agree():
    assert ram_in_bytes("8KiB") == ram_in_bytes("8k")
    assert ram_in_bytes("1g") == 1024 * ram_in_bytes("1m")
    assert ram_in_bytes("2 GB") == ram_in_bytes("2GiB")


@pytest.mark.parametrize("text", ["abc", "1.2.3GiB", "-1", "10XB", ""])
def test_ram_in_bytes_rejects_invalid(text):
    with pytest.raises(ValueError):
        ram_in_bytes(text)


def test_default_sizes():
    assert 1 <= default_cpus() <= 4
    assert 0 <= default_memory() <= 4 * 1024**3
    assert default_memory_as_string() == bytes_size(default_memory())
    assert default_disk_size_as_string() == "100GiB"
    assert default_guest_install_prefix() == "/usr/local"


def test_default_containerd_archives():
    archives = default_containerd_archives()
    assert [a.arch for a in archives] == ["x86_64", "aarch64"]
    for archive in archives:
        assert archive.digest.startswith("sha256:")
        assert "nerdctl-full-1.6.0" in archive.location


def test_port_forward_defaults_empty_rule(tmp_path):
    rule = PortForward()
    fill_port_forward_defaults(rule, str(tmp_path))
    assert rule.proto == "tcp"
    assert rule.guest_ip == ipaddress.ip_address("127.0.0.1")
    assert rule.host_ip == rule.guest_ip
    assert tuple(rule.guest_port_range) == (1, 65535)
    assert tuple(rule.host_port_range) == (1, 65535)


def test_port_forward_defaults_ports(tmp_path):
    single = PortForward(guest_port=80)
    fill_port_forward_defaults(single, str(tmp_path))
    assert tuple(single.guest_port_range) == (80, 80)
    assert tuple(single.host_port_range) == (80, 80)

    mapped = PortForward(guest_port=8080, host_port=8888)
    fill_port_forward_defaults(mapped, str(tmp_path))
    assert tuple(mapped.guest_port_range) == (8080, 8080)
    assert tuple(mapped.host_port_range) == (8888, 8888)


def test_port_forward_guest_ip_must_be_zero(tmp_path):
    rule = PortForward(guest_ip_must_be_zero=True)
    fill_port_forward_defaults(rule, str(tmp_path))
    assert rule.guest_ip == ipaddress.ip_address("0.0.0.0")


def test_port_forward_socket_templates(tmp_path):
    inst_dir = str(tmp_path / "inst")
    user = getpass.getuser()
    rule = PortForward(
        guest_socket="{{.Home}} | {{.User}}",
        host_socket="{{.Dir}}/{{.Name}}-{{.Instance}}.sock",
    )
    fill_port_forward_defaults(rule, inst_dir)
    assert rule.guest_socket == f"/home/{user}.linux | {user}"
    assert rule.host_socket == f"{inst_dir}/inst-inst.sock"


def test_port_forward_relative_host_socket(tmp_path):
    inst_dir = str(tmp_path / "inst")
    rule = PortForward(host_socket="{{.Name}}.sock")
    fill_port_forward_defaults(rule, inst_dir)
    assert rule.host_socket == os.path.join(inst_dir, "sock", "inst.sock")


def test_port_forward_broken_template_left_alone(tmp_path):
    rule = PortForward(guest_socket="/run/{{.Home")
    fill_port_forward_defaults(rule, str(tmp_path))
    assert rule.guest_socket == "/run/{{.Home"


def test_copy_to_host_templates(tmp_path):
    inst_dir = str(tmp_path / "box")
    user = getpass.getuser()
    rule = CopyToHost(guest_file="{{.Home}}/f", host_file="{{.Dir}}/{{.User}}")
    fill_copy_to_host_defaults(rule, inst_dir)
    assert rule.guest_file == f"/home/{user}.linux/f"
    assert rule.host_file == f"{inst_dir}/{user}"


def test_first_usernet_index():
    config = LimaYAML(networks=[Network(lima="shared"), Network(lima="user-v2")])
    assert first_usernet_index(config, lambda name: name == "user-v2") == 1
    assert first_usernet_index(config, lambda name: False) == -1


def test_first_usernet_index_ignores_lookup_errors():
    def lookup(name):
        if name == "missing":
            raise LookupError(name)
        return name == "user-v2"

    config = LimaYAML(networks=[Network(lima="missing"), Network(lima="user-v2")])
    assert first_usernet_index(config, lookup) == 1