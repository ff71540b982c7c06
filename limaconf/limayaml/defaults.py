"""Merging of an instance configuration with default and override documents."""

from __future__ import annotations

import copy
import logging
import os
import sys

from .model import (
    AARCH64,
    ARMV7L,
    PROBE_MODE_READINESS,
    PROVISION_MODE_DEPENDENCY,
    PROVISION_MODE_SYSTEM,
    QEMU,
    REVSSHFS,
    RISCV64,
    VIRTIOFS,
    VZ,
    X8664,
    LimaYAML,
    Mount,
    Network,
)
from .platform import (
    default_containerd_archives,
    default_cpus,
    default_disk_size_as_string,
    default_guest_install_prefix,
    default_memory_as_string,
    fill_copy_to_host_defaults,
    fill_port_forward_defaults,
    has_host_cpu,
    has_max_cpu,
    is_accel_os,
    is_native_arch,
    mac_address,
    resolve_arch,
    resolve_os,
    resolve_vm_type,
)

__all__ = [
    "fill_default",
    "DEFAULT_9P_SECURITY_MODEL",
    "DEFAULT_9P_PROTOCOL_VERSION",
    "DEFAULT_9P_MSIZE",
    "DEFAULT_9P_CACHE_FOR_RO",
    "DEFAULT_9P_CACHE_FOR_RW",
    "DEFAULT_VIRTIOFS_QUEUE_SIZE",
]

_log = logging.getLogger(__name__)

# "none" keeps symlinks working on 9p mounts.
DEFAULT_9P_SECURITY_MODEL = "none"
DEFAULT_9P_PROTOCOL_VERSION = "9p2000.L"
DEFAULT_9P_MSIZE = "128KiB"
DEFAULT_9P_CACHE_FOR_RO = "fscache"
DEFAULT_9P_CACHE_FOR_RW = "mmap"

DEFAULT_VIRTIOFS_QUEUE_SIZE = 1024


def _pick(y_value, d_value, o_value):
    """The override if set, else the config value if set, else the default."""
    if o_value is not None:
        return o_value
    return y_value if y_value is not None else d_value


def _builtin_cpu_types() -> dict[str, str]:
    types = {
        AARCH64: "cortex-a72",
        ARMV7L: "cortex-a7",
        X8664: "qemu64",
        RISCV64: "rv64",
    }
    for arch in types:
        if is_native_arch(arch) and is_accel_os():
            if has_host_cpu():
                types[arch] = "host"
            elif has_max_cpu():
                types[arch] = "max"
        if arch == X8664 and sys.platform == "darwin" and types[arch] in ("host", "max"):
            # pdpe1gb breaks guests on Intel Macs.
            types[arch] += ",-pdpe1gb"
    return types


def _merge_networks(entries: list[Network]) -> list[Network]:
    merged: list[Network] = []
    by_interface: dict[str, int] = {}
    for nw in entries:
        if nw.interface in by_interface:
            target = merged[by_interface[nw.interface]]
            if nw.vnl_deprecated:
                target.vnl_deprecated = nw.vnl_deprecated
                target.switch_port_deprecated = nw.switch_port_deprecated
                target.socket = ""
                target.lima = ""
            if nw.socket:
                if nw.vnl_deprecated:
                    _log.error(
                        'Network "%s" has both vnl="%s" and socket="%s" fields; ignoring vnl',
                        nw.interface, nw.vnl_deprecated, nw.socket,
                    )
                target.socket = nw.socket
                target.vnl_deprecated = ""
                target.switch_port_deprecated = 0
                target.lima = ""
            if nw.lima:
                if nw.vnl_deprecated:
                    _log.error(
                        'Network "%s" has both vnl="%s" and lima="%s" fields; ignoring vnl',
                        nw.interface, nw.vnl_deprecated, nw.lima,
                    )
                if nw.socket:
                    _log.error(
                        'Network "%s" has both socket="%s" and lima="%s" fields; ignoring socket',
                        nw.interface, nw.socket, nw.lima,
                    )
                target.lima = nw.lima
                target.socket = ""
                target.vnl_deprecated = ""
                target.switch_port_deprecated = 0
            if nw.mac_address:
                target.mac_address = nw.mac_address
        else:
            # Unnamed networks are never combined.
            if nw.interface:
                by_interface[nw.interface] = len(merged)
            merged.append(nw)
    return merged


def _merge_mounts(entries: list[Mount]) -> list[Mount]:
    merged: list[Mount] = []
    by_location: dict[str, int] = {}
    for mount in entries:
        if mount.location not in by_location:
            by_location[mount.location] = len(merged)
            merged.append(mount)
            continue
        target = merged[by_location[mount.location]]
        for attr in ("cache", "follow_symlinks", "sftp_driver"):
            value = getattr(mount.sshfs, attr)
            if value is not None:
                setattr(target.sshfs, attr, value)
        for attr in ("security_model", "protocol_version", "msize", "cache"):
            value = getattr(mount.nine_p, attr)
            if value is not None:
                setattr(target.nine_p, attr, value)
        if mount.virtiofs.queue_size is not None:
            target.virtiofs.queue_size = mount.virtiofs.queue_size
        if mount.writable is not None:
            target.writable = mount.writable
        if mount.mount_point:
            target.mount_point = mount.mount_point
    return merged


def fill_default(y: LimaYAML, d: LimaYAML, o: LimaYAML, file_path: str) -> LimaYAML:
    """Fill unset fields of ``y`` from ``d`` (or built-in defaults) and override them from ``o``.

    ``y`` is updated in place and returned; ``d`` and ``o`` are left untouched.
    Maps are merged d, y, o; most lists are concatenated o, y, d so the
    highest priority entries come first.  Mounts and networks are combined in
    d, y, o order, merging entries with the same location or interface.  DNS
    comes from the highest priority document that has any, and CA files and
    certificates are appended uniquely in d, y, o order.
    """
    d = copy.deepcopy(d)
    o = copy.deepcopy(o)

    y.vm_type = resolve_vm_type(_pick(y.vm_type, d.vm_type, o.vm_type))
    y.os = resolve_os(_pick(y.os, d.os, o.os))
    y.arch = resolve_arch(_pick(y.arch, d.arch, o.arch))

    y.images = [*o.images, *y.images, *d.images]
    for image in y.images:
        if not image.arch:
            image.arch = y.arch
        if image.kernel is not None and not image.kernel.arch:
            image.kernel.arch = image.arch
        if image.initrd is not None and not image.initrd.arch:
            image.initrd.arch = image.arch

    cpu_type = _builtin_cpu_types()
    override_cpu_type = False
    for source in (d.cpu_type, y.cpu_type, o.cpu_type):
        for arch, value in source.items():
            if value:
                override_cpu_type = True
                cpu_type[arch] = value
    if y.vm_type == QEMU or override_cpu_type:
        y.cpu_type = cpu_type

    y.cpus = _pick(y.cpus, d.cpus, o.cpus)
    if not y.cpus:
        y.cpus = default_cpus()

    y.memory = _pick(y.memory, d.memory, o.memory)
    if not y.memory:
        y.memory = default_memory_as_string()

    y.disk = _pick(y.disk, d.disk, o.disk)
    if not y.disk:
        y.disk = default_disk_size_as_string()

    y.additional_disks = [*o.additional_disks, *y.additional_disks, *d.additional_disks]

    y.audio.device = _pick(y.audio.device, d.audio.device, o.audio.device)
    if y.audio.device is None:
        y.audio.device = ""

    y.video.display = _pick(y.video.display, d.video.display, o.video.display)
    if not y.video.display:
        y.video.display = "none"

    y.video.vnc.display = _pick(y.video.vnc.display, d.video.vnc.display, o.video.vnc.display)
    if not y.video.vnc.display and y.vm_type == QEMU:
        y.video.vnc.display = "127.0.0.1:0,to=9"

    y.firmware.legacy_bios = _pick(y.firmware.legacy_bios, d.firmware.legacy_bios, o.firmware.legacy_bios)
    if y.firmware.legacy_bios is None:
        y.firmware.legacy_bios = False

    # The local port itself is chosen later by the host agent.
    y.ssh.local_port = _pick(y.ssh.local_port, d.ssh.local_port, o.ssh.local_port)
    if y.ssh.local_port is None:
        y.ssh.local_port = 0
    for attr, default in (
        ("load_dot_ssh_pub_keys", True),
        ("forward_agent", False),
        ("forward_x11", False),
        ("forward_x11_trusted", False),
    ):
        value = _pick(getattr(y.ssh, attr), getattr(d.ssh, attr), getattr(o.ssh, attr))
        setattr(y.ssh, attr, default if value is None else value)

    y.host_resolver.hosts = {**d.host_resolver.hosts, **y.host_resolver.hosts, **o.host_resolver.hosts}

    y.provision = [*o.provision, *y.provision, *d.provision]
    for provision in y.provision:
        if not provision.mode:
            provision.mode = PROVISION_MODE_SYSTEM
        if provision.mode == PROVISION_MODE_DEPENDENCY and provision.skip_default_dependency_resolution is None:
            provision.skip_default_dependency_resolution = False

    y.guest_install_prefix = _pick(y.guest_install_prefix, d.guest_install_prefix, o.guest_install_prefix)
    if y.guest_install_prefix is None:
        y.guest_install_prefix = default_guest_install_prefix()

    y.containerd.system = _pick(y.containerd.system, d.containerd.system, o.containerd.system)
    if y.containerd.system is None:
        y.containerd.system = False
    y.containerd.user = _pick(y.containerd.user, d.containerd.user, o.containerd.user)
    if y.containerd.user is None:
        y.containerd.user = True

    y.containerd.archives = [*o.containerd.archives, *y.containerd.archives, *d.containerd.archives]
    if not y.containerd.archives:
        y.containerd.archives = default_containerd_archives()
    for archive in y.containerd.archives:
        if not archive.arch:
            archive.arch = y.arch

    y.probes = [*o.probes, *y.probes, *d.probes]
    for index, probe in enumerate(y.probes, start=1):
        if not probe.mode:
            probe.mode = PROBE_MODE_READINESS
        if not probe.description:
            probe.description = f"user probe {index}/{len(y.probes)}"

    inst_dir = os.path.dirname(file_path)
    y.port_forwards = [*o.port_forwards, *y.port_forwards, *d.port_forwards]
    for rule in y.port_forwards:
        fill_port_forward_defaults(rule, inst_dir)

    y.copy_to_host = [*o.copy_to_host, *y.copy_to_host, *d.copy_to_host]
    for rule in y.copy_to_host:
        fill_copy_to_host_defaults(rule, inst_dir)

    y.host_resolver.enabled = _pick(y.host_resolver.enabled, d.host_resolver.enabled, o.host_resolver.enabled)
    if y.host_resolver.enabled is None:
        y.host_resolver.enabled = True

    y.host_resolver.ipv6 = _pick(y.host_resolver.ipv6, d.host_resolver.ipv6, o.host_resolver.ipv6)
    if y.host_resolver.ipv6 is None:
        y.host_resolver.ipv6 = False

    y.propagate_proxy_env = _pick(y.propagate_proxy_env, d.propagate_proxy_env, o.propagate_proxy_env)
    if y.propagate_proxy_env is None:
        y.propagate_proxy_env = True

    y.networks = _merge_networks([*d.networks, *y.networks, *o.networks])
    for index, nw in enumerate(y.networks):
        if not nw.mac_address:
            # Every interface of every instance gets its own MAC address.
            nw.mac_address = mac_address(f"{file_path}#{index}")
        if not nw.interface:
            nw.interface = f"lima{index}"

    # The mount type must be known before mounts are filled.
    y.mount_type = _pick(y.mount_type, d.mount_type, o.mount_type)
    if not y.mount_type:
        y.mount_type = VIRTIOFS if y.vm_type == VZ else REVSSHFS

    y.mounts = _merge_mounts([*d.mounts, *y.mounts, *o.mounts])
    for mount in y.mounts:
        if mount.sshfs.cache is None:
            mount.sshfs.cache = True
        if mount.sshfs.follow_symlinks is None:
            mount.sshfs.follow_symlinks = False
        if mount.sshfs.sftp_driver is None:
            mount.sshfs.sftp_driver = ""
        if mount.nine_p.security_model is None:
            mount.nine_p.security_model = DEFAULT_9P_SECURITY_MODEL
        if mount.nine_p.protocol_version is None:
            mount.nine_p.protocol_version = DEFAULT_9P_PROTOCOL_VERSION
        if mount.nine_p.msize is None:
            mount.nine_p.msize = DEFAULT_9P_MSIZE
        if mount.virtiofs.queue_size is None and y.vm_type == QEMU and y.mount_type == VIRTIOFS:
            mount.virtiofs.queue_size = DEFAULT_VIRTIOFS_QUEUE_SIZE
        if mount.writable is None:
            mount.writable = False
        if mount.nine_p.cache is None:
            mount.nine_p.cache = DEFAULT_9P_CACHE_FOR_RW if mount.writable else DEFAULT_9P_CACHE_FOR_RO
        if not mount.mount_point:
            mount.mount_point = mount.location

    # DNS lists are not combined; the highest priority non-empty list wins.
    if not y.dns:
        y.dns = list(d.dns)
    if o.dns:
        y.dns = list(o.dns)

    y.env = {**d.env, **y.env, **o.env}

    certs = y.ca_certificates
    certs.remove_defaults = _pick(
        certs.remove_defaults, d.ca_certificates.remove_defaults, o.ca_certificates.remove_defaults
    )
    if certs.remove_defaults is None:
        certs.remove_defaults = False
    certs.files = list(dict.fromkeys([*d.ca_certificates.files, *certs.files, *o.ca_certificates.files]))
    certs.certs = list(dict.fromkeys([*d.ca_certificates.certs, *certs.certs, *o.ca_certificates.certs]))

    if sys.platform == "darwin" and is_native_arch(AARCH64):
        y.rosetta.enabled = _pick(y.rosetta.enabled, d.rosetta.enabled, o.rosetta.enabled)
        if y.rosetta.enabled is None:
            y.rosetta.enabled = False
    else:
        y.rosetta.enabled = False

    y.rosetta.binfmt = _pick(y.rosetta.binfmt, d.rosetta.binfmt, o.rosetta.binfmt)
    if y.rosetta.binfmt is None:
        y.rosetta.binfmt = False

    return y