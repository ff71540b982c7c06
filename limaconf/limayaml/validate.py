"""Validation of filled-in instance configurations."""

from __future__ import annotations

import getpass
import ipaddress
import json
import logging
import os
import posixpath
import re
import stat
import string
import sys
from typing import Any

from ..localpath import expand
from ..networks.usernet import UNIX_PATH_MAX
from .model import (
    AARCH64,
    ARMV7L,
    LINUX,
    NINEP,
    PROBE_MODE_READINESS,
    PROVISION_MODE_BOOT,
    PROVISION_MODE_DEPENDENCY,
    PROVISION_MODE_SYSTEM,
    PROVISION_MODE_USER,
    QEMU,
    REVSSHFS,
    RISCV64,
    TCP,
    VIRTIOFS,
    VZ,
    WSL2,
    WSL_MOUNT,
    X8664,
    File,
    LimaYAML,
)
from .platform import is_native_arch, ram_in_bytes, resolve_arch

__all__ = ["validate", "validate_network", "validate_port"]

_log = logging.getLogger(__name__)

_ARCHES = (X8664, AARCH64, ARMV7L, RISCV64)
_SYSTEM_PATHS = {"/", "/bin", "/dev", "/etc", "/home", "/opt", "/sbin", "/tmp", "/usr", "/var"}
_SLIRP_NIC_NAME = "eth0"
_IPV4_ZERO = ipaddress.IPv4Address("0.0.0.0")

_DIGEST_SIZES = {"sha256": 32, "sha384": 48, "sha512": 64}


def _quote(value: Any) -> str:
    return json.dumps(value)


def _is_linux() -> bool:
    return sys.platform.startswith("linux")


def _is_darwin() -> bool:
    return sys.platform == "darwin"


def _validate_digest(digest: str, field_name: str) -> None:
    algorithm, sep, encoded = digest.partition(":")
    if not sep or algorithm not in _DIGEST_SIZES:
        raise ValueError(f"field `{field_name}.digest` refers to an unavailable digest algorithm")
    problem = None
    if not encoded:
        problem = "invalid checksum digest format"
    elif len(encoded) != _DIGEST_SIZES[algorithm] * 2:
        problem = "invalid checksum digest length"
    elif re.fullmatch(r"[a-f0-9]+", encoded) is None:
        problem = "invalid checksum digest format"
    if problem:
        raise ValueError(f"field `{field_name}.digest` is invalid: {digest}: {problem}")


def _validate_file_object(f: File, field_name: str) -> None:
    if "://" not in f.location:
        try:
            expand(f.location)
        except (ValueError, RuntimeError) as exc:
            raise ValueError(
                f"field `{field_name}.location` refers to an invalid local file path: "
                f"{_quote(f.location)}: {exc}"
            ) from exc
    if f.arch not in _ARCHES:
        raise ValueError(
            f"field `arch` must be {_quote(X8664)}, {_quote(AARCH64)}, {_quote(ARMV7L)}, "
            f"or {_quote(RISCV64)}; got {_quote(f.arch)}"
        )
    if f.digest:
        _validate_digest(f.digest, field_name)


def _size(value: str | None, message: str) -> None:
    try:
        if value is None:
            raise ValueError("invalid size: ''")
        ram_in_bytes(value)
    except ValueError as exc:
        raise ValueError(f"{message}: {exc}") from exc


def _lima_username() -> str:
    try:
        return getpass.getuser()
    except (OSError, KeyError, ImportError) as exc:
        raise RuntimeError(f"internal error (not an error of YAML): {exc}") from exc


def _is_zero_ip(ip: Any) -> bool:
    if ip is None:
        return False
    if ip == _IPV4_ZERO:
        return True
    return ip.version == 6 and ip.ipv4_mapped == _IPV4_ZERO


def validate(config: LimaYAML, warn: bool = False, networks_config: Any = None) -> None:
    """Raise ValueError if the filled-in ``config`` is not usable.

    ``networks_config`` is the networks configuration consulted for
    networks that name a ``lima`` network.
    """
    y = config
    if y.os != LINUX:
        raise ValueError(f"field `os` must be {_quote(LINUX)}; got {_quote(y.os)}")
    if y.arch not in _ARCHES:
        raise ValueError(
            f"field `arch` must be {_quote(X8664)}, {_quote(AARCH64)}, {_quote(ARMV7L)} "
            f"or {_quote(RISCV64)}; got {_quote(y.arch)}"
        )

    if y.vm_type == VZ:
        if not is_native_arch(y.arch):
            raise ValueError(
                f"field `arch` must be {_quote(resolve_arch(None))} for VZ; got {_quote(y.arch)}"
            )
    elif y.vm_type not in (QEMU, WSL2):
        raise ValueError(
            f"field `vmType` must be {_quote(QEMU)}, {_quote(VZ)}, {_quote(WSL2)}; got {_quote(y.vm_type)}"
        )

    if not y.images:
        raise ValueError("field `images` must be set")
    for i, image in enumerate(y.images):
        _validate_file_object(image, f"images[{i}]")
        if image.kernel is not None:
            _validate_file_object(image.kernel, f"images[{i}].kernel")
            if image.kernel.arch != image.arch:
                raise ValueError(
                    f"images[{i}].kernel has unexpected architecture {_quote(image.kernel.arch)}, "
                    f"must be {_quote(image.arch)}"
                )
        elif image.arch == RISCV64:
            raise ValueError('riscv64 needs the kernel (e.g., "uboot.elf") to be specified')
        if image.initrd is not None:
            _validate_file_object(image.initrd, f"images[{i}].initrd")
            if image.kernel is None:
                raise ValueError("initrd requires the kernel to be specified")
            if image.initrd.arch != image.arch:
                raise ValueError(
                    f"images[{i}].initrd has unexpected architecture {_quote(image.initrd.arch)}, "
                    f"must be {_quote(image.arch)}"
                )

    for arch in y.cpu_type:
        if arch not in _ARCHES:
            raise ValueError(f"field `cpuType` uses unsupported arch {_quote(arch)}")

    if not y.cpus:
        raise ValueError("field `cpus` must be set")

    _size(y.memory, "field `memory` has an invalid value")
    _size(y.disk, "field `memory` has an invalid value")

    reserved_home = f"/home/{_lima_username()}.linux"

    for i, mount in enumerate(y.mounts):
        if not os.path.isabs(mount.location) and not mount.location.startswith("~"):
            raise ValueError(
                f"field `mounts[{i}].location` must be an absolute path, got {_quote(mount.location)}"
            )
        try:
            loc = expand(mount.location)
        except (ValueError, RuntimeError) as exc:
            raise ValueError(
                f"field `mounts[{i}].location` refers to an unexpandable path: "
                f"{_quote(mount.location)}: {exc}"
            ) from exc
        if loc in _SYSTEM_PATHS:
            raise ValueError(
                f"field `mounts[{i}].location` must not be a system path such as /etc or /usr"
            )
        if loc == reserved_home:
            raise ValueError(f"field `mounts[{i}].location` is internally reserved")
        try:
            info = os.stat(loc)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise ValueError(
                f"field `mounts[{i}].location` refers to an inaccessible path: "
                f"{_quote(mount.location)}: {exc}"
            ) from exc
        else:
            if not stat.S_ISDIR(info.st_mode):
                raise ValueError(
                    f"field `mounts[{i}].location` refers to a non-directory path: {_quote(mount.location)}"
                )
        _size(mount.nine_p.msize, "field `msize` has an invalid value")

    if y.ssh.local_port:
        validate_port("ssh.localPort", y.ssh.local_port)

    if y.mount_type not in (REVSSHFS, NINEP, VIRTIOFS, WSL_MOUNT):
        raise ValueError(
            f"field `mountType` must be {_quote(REVSSHFS)} or {_quote(NINEP)} or {_quote(VIRTIOFS)}, "
            f"or {_quote(WSL_MOUNT)}, got {_quote(y.mount_type)}"
        )

    if warn and not _is_linux():
        for i, mount in enumerate(y.mounts):
            if mount.virtiofs.queue_size is not None:
                _log.warning("field mounts[%d].virtiofs.queueSize is only supported on Linux", i)

    for i, provision in enumerate(y.provision):
        if provision.mode in (PROVISION_MODE_SYSTEM, PROVISION_MODE_USER, PROVISION_MODE_BOOT):
            if provision.skip_default_dependency_resolution is not None:
                raise ValueError(
                    f"field `provision[{i}].mode` cannot set skipDefaultDependencyResolution, "
                    f"only valid on scripts of type {_quote(PROVISION_MODE_DEPENDENCY)}"
                )
        elif provision.mode != PROVISION_MODE_DEPENDENCY:
            raise ValueError(
                f"field `provision[{i}].mode` must one of {_quote(PROVISION_MODE_SYSTEM)}, "
                f"{_quote(PROVISION_MODE_USER)}, {_quote(PROVISION_MODE_BOOT)}, "
                f"or {_quote(PROVISION_MODE_DEPENDENCY)}"
            )

    if (y.containerd.user or y.containerd.system) and not y.containerd.archives:
        raise ValueError("field `containerd.archives` must be provided")

    for i, probe in enumerate(y.probes):
        if probe.mode != PROBE_MODE_READINESS:
            raise ValueError(f"field `probe[{i}].mode` can only be {_quote(PROBE_MODE_READINESS)}")

    for i, rule in enumerate(y.port_forwards):
        _validate_port_forward(rule, f"portForwards[{i}]")

    for i, rule in enumerate(y.copy_to_host):
        field = f"CopyToHost[{i}]"
        if rule.guest_file and not posixpath.isabs(rule.guest_file):
            raise ValueError(f"field `{field}.guest` must be an absolute path")
        if rule.host_file and not os.path.isabs(rule.host_file):
            raise ValueError(
                f"field `{field}.host` must be an absolute path, but is {_quote(rule.host_file)}"
            )

    if y.host_resolver.enabled and y.dns:
        raise ValueError("field `dns` must be empty when field `HostResolver.Enabled` is true")

    validate_network(y, warn, networks_config)
    if warn:
        _warn_experimental(y)


def _validate_port_forward(rule: Any, field: str) -> None:
    guest_range = tuple(rule.guest_port_range)
    host_range = tuple(rule.host_port_range)
    if rule.guest_ip_must_be_zero and not _is_zero_ip(rule.guest_ip):
        raise ValueError(
            f"field `{field}.guestIPMustBeZero` can only be true when field `{field}.guestIP` is 0.0.0.0"
        )
    if rule.guest_port != 0:
        if rule.guest_socket:
            raise ValueError(f"field `{field}.guestPort` must be 0 when field `{field}.guestSocket` is set")
        if rule.guest_port != guest_range[0]:
            raise ValueError(f"field `{field}.guestPort` must match field `{field}.guestPortRange[0]`")
        validate_port(f"{field}.guestPort", rule.guest_port)
    if rule.host_port != 0:
        if rule.host_socket:
            raise ValueError(f"field `{field}.hostPort` must be 0 when field `{field}.hostSocket` is set")
        if rule.host_port != host_range[0]:
            raise ValueError(f"field `{field}.hostPort` must match field `{field}.hostPortRange[0]`")
        validate_port(f"{field}.hostPort", rule.host_port)
    for j in range(2):
        validate_port(f"{field}.guestPortRange[{j}]", guest_range[j])
        validate_port(f"{field}.hostPortRange[{j}]", host_range[j])
    if guest_range[0] > guest_range[1]:
        raise ValueError(
            f"field `{field}.guestPortRange[1]` must be greater than or equal to field `{field}.guestPortRange[0]`"
        )
    if host_range[0] > host_range[1]:
        raise ValueError(
            f"field `{field}.hostPortRange[1]` must be greater than or equal to field `{field}.hostPortRange[0]`"
        )
    if guest_range[1] - guest_range[0] != host_range[1] - host_range[0]:
        raise ValueError(
            f"field `{field}.hostPortRange` must specify the same number of ports as field `{field}.guestPortRange`"
        )
    if rule.guest_socket:
        if not posixpath.isabs(rule.guest_socket):
            raise ValueError(f"field `{field}.guestSocket` must be an absolute path")
        if not rule.host_socket and host_range[1] - host_range[0] > 0:
            raise ValueError(
                f"field `{field}.guestSocket` can only be mapped to a single port or socket. not a range"
            )
    if rule.host_socket:
        if not os.path.isabs(rule.host_socket):
            raise ValueError(
                f"field `{field}.hostSocket` must be an absolute path, but is {_quote(rule.host_socket)}"
            )
        if not rule.guest_socket and guest_range[1] - guest_range[0] > 0:
            raise ValueError(
                f"field `{field}.hostSocket` can only be mapped from a single port or socket. not a range"
            )
    if len(rule.host_socket) >= UNIX_PATH_MAX:
        raise ValueError(
            f"field `{field}.hostSocket` must be less than UNIX_PATH_MAX={UNIX_PATH_MAX} characters, "
            f"but is {len(rule.host_socket)}"
        )
    if rule.proto != TCP:
        raise ValueError(f"field `{field}.proto` must be {_quote(TCP)}")
    if rule.reverse and (not rule.guest_socket or not rule.host_socket):
        raise ValueError(f"field `{field}.reverse` must be false")


def _parse_mac(text: str) -> bytes:
    error = ValueError(f"address {text}: invalid MAC address")
    if len(text) < 14:
        raise error
    if text[2] in ":-":
        if (len(text) + 1) % 3 != 0:
            raise error
        groups = text.split(text[2])
        width = 2
    elif text[4] == ".":
        if (len(text) + 1) % 5 != 0:
            raise error
        groups = text.split(".")
        width = 4
    else:
        raise error
    if any(len(g) != width or not all(c in string.hexdigits for c in g) for g in groups):
        raise error
    result = bytes.fromhex("".join(groups))
    if len(result) not in (6, 8, 20):
        raise error
    return result


def _is_socket(path: str) -> bool | None:
    """Whether ``path`` is a socket; None when it does not exist."""
    try:
        info = os.stat(path)
    except FileNotFoundError:
        return None
    return stat.S_ISSOCK(info.st_mode)


def validate_network(config: LimaYAML, warn: bool = False, networks_config: Any = None) -> None:
    """Raise ValueError if the networks of ``config`` are inconsistent."""
    seen: dict[str, int] = {}
    for i, nw in enumerate(config.networks):
        field = f"networks[{i}]"
        if nw.lima:
            if networks_config is None:
                raise ValueError(f"field `{field}.lima` requires a networks configuration")
            try:
                networks_config.check(nw.lima)
            except Exception:
                raise ValueError(
                    f"field `{field}.lima` references network {_quote(nw.lima)} which is not defined in networks.yaml"
                ) from None
            if not networks_config.usernet(nw.lima) and not _is_darwin():
                raise ValueError(f"field `{field}.lima` is only supported on macOS right now")
            if nw.socket:
                raise ValueError(f"field `{field}.lima` and field `{field}.socket` are mutually exclusive")
            if nw.vz_nat:
                raise ValueError(f"field `{field}.lima` and field `{field}.vzNAT` are mutually exclusive")
            if nw.vnl_deprecated:
                raise ValueError(f"field `{field}.lima` and field `{field}.vnl` are mutually exclusive")
            if nw.switch_port_deprecated:
                raise ValueError(f"field `{field}.switchPort` cannot be used with field `{field}.lima`")
        elif nw.socket:
            if nw.vz_nat:
                raise ValueError(f"field `{field}.socket` and field `{field}.vzNAT` are mutually exclusive")
            if nw.vnl_deprecated:
                raise ValueError(f"field `{field}.socket` and field `{field}.vnl` are mutually exclusive")
            if nw.switch_port_deprecated:
                raise ValueError(f"field `{field}.switchPort` cannot be used with field `{field}.socket`")
            if _is_socket(nw.socket) is False:
                raise ValueError(f"field `{field}.socket` {_quote(nw.socket)} points to a non-socket file")
        elif nw.vz_nat:
            if config.vm_type != VZ:
                raise ValueError(f"field `{field}.vzNAT` requires `vmType` to be {_quote(VZ)}")
            if nw.vnl_deprecated:
                raise ValueError(f"field `{field}.vzNAT` and field `{field}.vnl` are mutually exclusive")
            if nw.switch_port_deprecated:
                raise ValueError(f"field `{field}.switchPort` cannot be used with field `{field}.vzNAT`")
        else:
            _validate_vnl(nw, field, warn)

        if nw.mac_address:
            try:
                hw = _parse_mac(nw.mac_address)
            except ValueError as exc:
                raise ValueError(f"field `vmnet.mac` invalid: {exc}") from exc
            if len(hw) != 6:
                raise ValueError(
                    f"field `{field}.macAddress` must be a 48 bit (6 bytes) MAC address; "
                    f"actual length of {_quote(nw.mac_address)} is {len(hw)} bytes"
                )
        size = len(nw.interface.encode("utf-8"))
        if size >= 16:
            raise ValueError(
                f"field `{field}.interface` must be less than 16 bytes, but is {size} bytes: {_quote(nw.interface)}"
            )
        if any(c in nw.interface for c in " \t\n/"):
            raise ValueError(f"field `{field}.interface` must not contain whitespace or slashes")
        if nw.interface == _SLIRP_NIC_NAME:
            raise ValueError(
                f"field `{field}.interface` must not be set to {_quote(_SLIRP_NIC_NAME)} because it is reserved for slirp"
            )
        if nw.interface in seen:
            raise ValueError(
                f"field `{field}.interface` value {_quote(nw.interface)} has already been used by "
                f"field `networks[{seen[nw.interface]}].interface`"
            )
        seen[nw.interface] = i


def _validate_vnl(nw: Any, field: str, warn: bool) -> None:
    vnl = nw.vnl_deprecated
    if not vnl:
        raise ValueError(f"field `{field}.lima`, field `{field}.socket`, or field `{field}.vnl` must be set")
    if "://" not in vnl or vnl.startswith("vde://"):
        switch = vnl.removeprefix("vde://")
        try:
            info = os.stat(switch)
        except OSError as exc:
            # Harmless while the instance is stopped.
            _log.debug("field `%s.vnl` %s failed stat: %s", field, _quote(switch), exc)
            return
        if stat.S_ISDIR(info.st_mode):
            ctl = os.path.join(switch, "ctl")
            try:
                ctl_info = os.stat(ctl)
            except OSError:
                ctl_info = None
            if ctl_info is not None and not stat.S_ISSOCK(ctl_info.st_mode):
                raise ValueError(f"field `{field}.vnl` file {_quote(ctl)} is not a UNIX socket")
            if nw.switch_port_deprecated == 65535:
                raise ValueError(
                    f"field `{field}.vnl` points to a non-PTP switch, so the port number must not be 65535"
                )
        else:
            if not stat.S_ISSOCK(info.st_mode):
                raise ValueError(f"field `{field}.vnl` {_quote(switch)} is not a directory nor a UNIX socket")
            if nw.switch_port_deprecated != 65535:
                raise ValueError(
                    f"field `{field}.vnl` points to a PTP (switchless) socket {_quote(switch)}, "
                    f"so the port number has to be 65535 (got {nw.switch_port_deprecated})"
                )
    elif not _is_linux() and warn:
        _log.warning(
            "field `%s.vnl` is unlikely to work for %s (unless libvdeplug4 has been ported to %s and is installed)",
            field, sys.platform, sys.platform,
        )


def validate_port(field: str, port: int) -> None:
    """Raise ValueError unless ``port`` is a usable TCP port other than 22."""
    if port < 0:
        raise ValueError(f"field `{field}` must be > 0")
    if port == 0:
        raise ValueError(f"field `{field}` must be set")
    if port == 22:
        raise ValueError(f"field `{field}` must not be 22")
    if port > 65535:
        raise ValueError(f"field `{field}` must be < 65536")


def _warn_experimental(y: LimaYAML) -> None:
    if y.mount_type == NINEP:
        _log.warning("`mountType: 9p` is experimental")
    if y.mount_type == VIRTIOFS and _is_linux():
        _log.warning("`mountType: virtiofs` on Linux is experimental")
    if y.vm_type == VZ:
        _log.warning("`vmType: vz` is experimental")
    if y.arch == RISCV64:
        _log.warning("`arch: riscv64` is experimental")
    if y.video.display is not None and "vnc" in y.video.display:
        _log.warning("`video.display: vnc` is experimental")
    if y.audio.device:
        _log.warning("`audio.device` is experimental")