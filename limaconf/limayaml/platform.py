"""Host platform detection and built-in defaults for instance configurations."""

from __future__ import annotations

import getpass
import hashlib
import ipaddress
import logging
import os
import platform as _platform
import re
import sys
from typing import Callable

from .model import (
    AARCH64,
    ARMV7L,
    LINUX,
    QEMU,
    RISCV64,
    TCP,
    VZ,
    WSL2,
    X8664,
    CopyToHost,
    File,
    LimaYAML,
    PortForward,
)

__all__ = [
    "new_os",
    "new_arch",
    "new_vm_type",
    "resolve_vm_type",
    "resolve_os",
    "resolve_arch",
    "is_accel_os",
    "has_host_cpu",
    "has_max_cpu",
    "is_native_arch",
    "mac_address",
    "bytes_size",
    "ram_in_bytes",
    "default_cpus",
    "default_memory",
    "default_memory_as_string",
    "default_disk_size_as_string",
    "default_guest_install_prefix",
    "default_containerd_archives",
    "fill_port_forward_defaults",
    "fill_copy_to_host_defaults",
    "first_usernet_index",
    "SOCKET_DIR",
]

_log = logging.getLogger(__name__)

SOCKET_DIR = "sock"

IPV4_LOOPBACK = ipaddress.IPv4Address("127.0.0.1")
IPV4_ZERO = ipaddress.IPv4Address("0.0.0.0")

_NERDCTL_VERSION = "1.6.0"

_BINARY_ABBRS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB", "YiB")
_BINARY_MAP = {"k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4, "p": 1024**5}
_SIZE_RE = re.compile(r"^(\d+(\.\d+)*) ?([kKmMgGtTpP])?[iI]?[bB]?$", re.ASCII)

_TEMPLATE_ACTION = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_FIELD_ACTION = re.compile(r"^\s*\.([A-Za-z_][A-Za-z0-9_]*)\s*$")


def _goos() -> str:
    name = sys.platform
    if name.startswith("linux"):
        return "linux"
    if name == "darwin":
        return "darwin"
    if name in ("win32", "cygwin"):
        return "windows"
    return re.sub(r"\d+$", "", name)


def _goarch() -> str:
    machine = _platform.machine().lower()
    known = {
        "x86_64": "amd64",
        "amd64": "amd64",
        "aarch64": "arm64",
        "arm64": "arm64",
        "riscv64": "riscv64",
    }
    if machine in known:
        return known[machine]
    if machine.startswith("arm"):
        return "arm"
    return machine


def _goarm() -> int:
    if _goos() != "linux" or _goarch() != "arm":
        return 0
    machine = _platform.machine().lower()
    if machine.startswith(("armv7", "armv8")):
        return 7
    if machine.startswith("armv6"):
        return 6
    return 5


def new_os(name: str) -> str:
    """The configuration OS name for a host OS name."""
    if name == "linux":
        return LINUX
    _log.warning("Unknown os: %s", name)
    return name


def new_arch(arch: str) -> str:
    """The configuration architecture name for a host architecture name."""
    if arch == "amd64":
        return X8664
    if arch == "arm64":
        return AARCH64
    if arch == "arm":
        arm = _goarm()
        if arm == 7:
            return ARMV7L
        _log.warning("Unknown arm: %d", arm)
        return arch
    if arch == "riscv64":
        return RISCV64
    _log.warning("Unknown arch: %s", arch)
    return arch


def new_vm_type(driver: str) -> str:
    """The VM type for a driver name."""
    if driver in (VZ, QEMU, WSL2):
        return driver
    _log.warning("Unknown driver: %s", driver)
    return driver


def _is_default(value: str | None) -> bool:
    return value is None or value in ("", "default")


def resolve_vm_type(value: str | None) -> str:
    return QEMU if _is_default(value) else new_vm_type(value)


def resolve_os(value: str | None) -> str:
    return new_os("linux") if _is_default(value) else value


def resolve_arch(value: str | None) -> str:
    return new_arch(_goarch()) if _is_default(value) else value


def is_accel_os() -> bool:
    """Whether the host OS offers hardware acceleration."""
    return _goos() in ("darwin", "linux", "netbsd", "windows")


def has_host_cpu() -> bool:
    return _goos() in ("darwin", "linux")


def has_max_cpu() -> bool:
    return _goos() != "windows"


def is_native_arch(arch: str) -> bool:
    """Whether ``arch`` is the architecture of the host."""
    goarch = _goarch()
    return (
        (arch == X8664 and goarch == "amd64")
        or (arch == AARCH64 and goarch == "arm64")
        or (arch == ARMV7L and goarch == "arm" and _goarm() == 7)
        or (arch == RISCV64 and goarch == "riscv64")
    )


def mac_address(unique_id: str, machine_id: str = "") -> str:
    """A stable, locally administered MAC address derived from the ids."""
    digest = hashlib.sha256((machine_id + unique_id).encode("utf-8")).digest()
    octets = bytes((0x52, 0x55, 0x55)) + digest[:3]
    return ":".join(f"{b:02x}" for b in octets)


def bytes_size(size: float) -> str:
    """A human-readable binary size such as ``4GiB``."""
    value = float(size)
    index = 0
    while value >= 1024.0 and index < len(_BINARY_ABBRS) - 1:
        value /= 1024.0
        index += 1
    return "%.4g%s" % (value, _BINARY_ABBRS[index])


def ram_in_bytes(text: str) -> int:
    """Parse a binary size such as ``4GiB`` or ``512m`` into bytes."""
    match = _SIZE_RE.match(text)
    if not match:
        raise ValueError(f"invalid size: '{text}'")
    number = match.group(1)
    if number.count(".") > 1:
        raise ValueError(f'parsing "{number}": invalid syntax')
    size = float(number)
    prefix = (match.group(3) or "").lower()
    size *= _BINARY_MAP.get(prefix, 1)
    return int(size)


def default_cpus() -> int:
    return min(os.cpu_count() or 1, 4)


def _total_memory() -> int:
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    except (AttributeError, ValueError, OSError):
        return 0


def default_memory() -> int:
    """Half of the host memory, at most 4GiB."""
    return min(_total_memory() // 2, 4 * 1024**3)


def default_memory_as_string() -> str:
    return bytes_size(default_memory())


def default_disk_size_as_string() -> str:
    return "100GiB"


def default_guest_install_prefix() -> str:
    return "/usr/local"


def default_containerd_archives() -> list[File]:
    def location(goos: str, goarch: str) -> str:
        return (
            f"https://github.com/containerd/nerdctl/releases/download/v{_NERDCTL_VERSION}"
            f"/nerdctl-full-{_NERDCTL_VERSION}-{goos}-{goarch}.tar.gz"
        )

    return [
        File(
            location=location("linux", "amd64"),
            arch=X8664,
            digest="sha256:2c5c43a8b77ed62090241027361baa62d8fb70a759bc9e7a82c637135598701f",
        ),
        File(
            location=location("linux", "arm64"),
            arch=AARCH64,
            digest="sha256:1f5c2db10b4340197dfa63cfee749ad7d0b60d774433d84181815c899c359c80",
        ),
    ]


def _current_user() -> tuple[str, str]:
    name = getpass.getuser()
    uid = str(os.getuid()) if hasattr(os, "getuid") else ""
    return name, uid


def _render(template: str, data: dict[str, str]) -> str:
    def action(match: re.Match[str]) -> str:
        field = _FIELD_ACTION.match(match.group(1))
        if field is None:
            raise ValueError(f"unsupported template action {match.group(0)!r}")
        return data.get(field.group(1), "<no value>")

    rendered = _TEMPLATE_ACTION.sub(action, template)
    leftover = _TEMPLATE_ACTION.sub("", template)
    if "{{" in leftover:
        raise ValueError(f"unclosed action in {template!r}")
    return rendered


def _guest_template(template: str) -> str:
    user, uid = _current_user()
    return _render(template, {"Home": f"/home/{user}.linux", "UID": uid, "User": user})


def _host_template(template: str, inst_dir: str) -> str:
    user, uid = _current_user()
    name = os.path.basename(inst_dir)
    return _render(
        template,
        {
            "Dir": inst_dir,
            "Home": os.path.expanduser("~"),
            "Name": name,
            "UID": uid,
            "User": user,
            "Instance": name,
            "LimaHome": os.path.dirname(inst_dir),
        },
    )


def fill_port_forward_defaults(rule: PortForward, inst_dir: str) -> None:
    """Fill the unset fields of ``rule`` in place."""
    if not rule.proto:
        rule.proto = TCP
    if rule.guest_ip is None:
        rule.guest_ip = IPV4_ZERO if rule.guest_ip_must_be_zero else IPV4_LOOPBACK
    if rule.host_ip is None:
        rule.host_ip = IPV4_LOOPBACK
    if tuple(rule.guest_port_range) == (0, 0):
        if rule.guest_port == 0:
            rule.guest_port_range = (1, 65535)
        else:
            rule.guest_port_range = (rule.guest_port, rule.guest_port)
    if tuple(rule.host_port_range) == (0, 0):
        if rule.host_port == 0:
            rule.host_port_range = tuple(rule.guest_port_range)
        else:
            rule.host_port_range = (rule.host_port, rule.host_port)
    if rule.guest_socket:
        try:
            rule.guest_socket = _guest_template(rule.guest_socket)
        except ValueError as exc:
            _log.warning("Couldn't process guestSocket %r as a template: %s", rule.guest_socket, exc)
    if rule.host_socket:
        try:
            rule.host_socket = _host_template(rule.host_socket, inst_dir)
        except ValueError as exc:
            _log.warning("Couldn't process hostSocket %r as a template: %s", rule.host_socket, exc)
        if not os.path.isabs(rule.host_socket):
            rule.host_socket = os.path.join(inst_dir, SOCKET_DIR, rule.host_socket)


def fill_copy_to_host_defaults(rule: CopyToHost, inst_dir: str) -> None:
    """Expand the templates in ``rule`` in place."""
    if rule.guest_file:
        try:
            rule.guest_file = _guest_template(rule.guest_file)
        except ValueError as exc:
            _log.warning("Couldn't process guest %r as a template: %s", rule.guest_file, exc)
    if rule.host_file:
        try:
            rule.host_file = _host_template(rule.host_file, inst_dir)
        except ValueError as exc:
            _log.warning("Couldn't process host %r as a template: %s", rule.host_file, exc)


def first_usernet_index(config: LimaYAML, is_usernet: Callable[[str], bool]) -> int:
    """Index of the first user-mode network in ``config``, or -1."""
    for index, network in enumerate(config.networks):
        try:
            found = is_usernet(network.lima)
        except (LookupError, ValueError, OSError):
            found = False
        if found:
            return index
    return -1