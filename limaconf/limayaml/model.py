"""The instance configuration document and its mapping form."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Union

__all__ = [
    "File",
    "Kernel",
    "Image",
    "Disk",
    "SSHFS",
    "NineP",
    "Virtiofs",
    "Mount",
    "SSH",
    "Firmware",
    "Audio",
    "VNCOptions",
    "Video",
    "Provision",
    "Containerd",
    "Probe",
    "PortForward",
    "CopyToHost",
    "Network",
    "HostResolver",
    "CACertificates",
    "Rosetta",
    "LimaYAML",
    "from_mapping",
    "to_mapping",
]

_log = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

LINUX = "Linux"

X8664 = "x86_64"
AARCH64 = "aarch64"
ARMV7L = "armv7l"
RISCV64 = "riscv64"

REVSSHFS = "reverse-sshfs"
NINEP = "9p"
VIRTIOFS = "virtiofs"
WSL_MOUNT = "wsl2"

QEMU = "qemu"
VZ = "vz"
WSL2 = "wsl2"

SFTP_DRIVER_BUILTIN = "builtin"
SFTP_DRIVER_OPENSSH_SFTP_SERVER = "openssh-sftp-server"

PROVISION_MODE_SYSTEM = "system"
PROVISION_MODE_USER = "user"
PROVISION_MODE_BOOT = "boot"
PROVISION_MODE_DEPENDENCY = "dependency"

PROBE_MODE_READINESS = "readiness"

TCP = "tcp"


class _Scalar:
    def __init__(self, kind: type, *, optional: bool = False, low: int | None = None, high: int | None = None):
        self.kind = kind
        self.optional = optional
        self.low = low
        self.high = high
        self.zero = kind()

    def _accepts(self, value: Any) -> bool:
        if self.kind is bool:
            return isinstance(value, bool)
        if self.kind is int:
            return isinstance(value, int) and not isinstance(value, bool)
        return isinstance(value, self.kind)

    def decode(self, value: Any, path: str, unknown: list[str]) -> Any:
        if value is None:
            return None if self.optional else self.zero
        if not self._accepts(value):
            raise ValueError(f"field `{path}` must be of type {self.kind.__name__}, got {value!r}")
        if (self.low is not None and value < self.low) or (self.high is not None and value > self.high):
            raise ValueError(f"field `{path}` is out of range: {value}")
        return value

    def encode(self, value: Any) -> Any:
        if value is None:
            return None if self.optional else self.zero
        return self.kind(value)

    def is_empty(self, value: Any) -> bool:
        return value is None if self.optional else value == self.zero


class _IP:
    def decode(self, value: Any, path: str, unknown: list[str]) -> IPAddress | None:
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            raise ValueError(f"field `{path}` must be an IP address, got {value!r}")
        try:
            return ipaddress.ip_address(value)
        except ValueError:
            raise ValueError(f"field `{path}`: invalid IP address {value!r}") from None

    def encode(self, value: IPAddress | None) -> str | None:
        return None if value is None else str(value)

    def is_empty(self, value: Any) -> bool:
        return value is None


class _PortRange:
    def decode(self, value: Any, path: str, unknown: list[str]) -> tuple[int, int]:
        if value is None:
            return (0, 0)
        if (
            not isinstance(value, (list, tuple))
            or len(value) != 2
            or not all(isinstance(v, int) and not isinstance(v, bool) for v in value)
        ):
            raise ValueError(f"field `{path}` must be a list of two integers, got {value!r}")
        return (value[0], value[1])

    def encode(self, value: tuple[int, int]) -> list[int]:
        return list(value)

    def is_empty(self, value: Any) -> bool:
        return tuple(value) == (0, 0)


class _List:
    def __init__(self, item: Any):
        self.item = item

    def decode(self, value: Any, path: str, unknown: list[str]) -> list[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError(f"field `{path}` must be a list, got {value!r}")
        return [self.item.decode(v, f"{path}[{i}]", unknown) for i, v in enumerate(value)]

    def encode(self, value: list[Any]) -> list[Any]:
        return [self.item.encode(v) for v in value]

    def is_empty(self, value: Any) -> bool:
        return not value


class _StrMap:
    def decode(self, value: Any, path: str, unknown: list[str]) -> dict[str, str]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError(f"field `{path}` must be a mapping, got {value!r}")
        result = {}
        for key, item in value.items():
            if not isinstance(key, str) or not isinstance(item, str):
                raise ValueError(f"field `{path}` must map strings to strings, got {key!r}: {item!r}")
            result[key] = item
        return result

    def encode(self, value: dict[str, str]) -> dict[str, str]:
        return dict(value)

    def is_empty(self, value: Any) -> bool:
        return not value


class _Struct:
    def __init__(self, cls: type, *, optional: bool = False):
        self.cls = cls
        self.optional = optional

    def decode(self, value: Any, path: str, unknown: list[str]) -> Any:
        if value is None:
            return None if self.optional else self.cls()
        if not isinstance(value, Mapping):
            raise ValueError(f"field `{path}` must be a mapping, got {value!r}")
        return _decode_struct(self.cls, value, path, unknown)

    def encode(self, value: Any) -> Any:
        return None if value is None else _encode_struct(value)

    def is_empty(self, value: Any) -> bool:
        if value is None:
            return True
        if self.optional:
            return False
        return all(f.metadata["codec"].is_empty(getattr(value, f.name)) for f in fields(value))


class _DiskCodec(_Struct):
    def decode(self, value: Any, path: str, unknown: list[str]) -> Any:
        if isinstance(value, str):
            return self.cls(name=value)
        return super().decode(value, path, unknown)


def _decode_struct(cls: type, data: Mapping[Any, Any], path: str, unknown: list[str]) -> Any:
    by_key = {f.metadata["key"]: f for f in fields(cls)}
    values = {}
    for key, raw in data.items():
        if not isinstance(key, str):
            raise ValueError(f"field names must be strings, got {key!r} in `{path or '.'}`")
        sub = f"{path}.{key}" if path else key
        spec = by_key.get(key)
        if spec is None:
            unknown.append(sub)
            continue
        values[spec.name] = spec.metadata["codec"].decode(raw, sub, unknown)
    return cls(**values)


def _encode_struct(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for spec in fields(obj):
        codec = spec.metadata["codec"]
        value = getattr(obj, spec.name)
        if spec.metadata["omitempty"] and codec.is_empty(value):
            continue
        out[spec.metadata["key"]] = codec.encode(value)
    return out


def _field(key: str, codec: Any, *, omitempty: bool = True) -> Any:
    return field(
        default_factory=lambda: codec.decode(None, key, []),
        metadata={"key": key, "codec": codec, "omitempty": omitempty},
    )


_STR = _Scalar(str)
_OPT_STR = _Scalar(str, optional=True)
_INT = _Scalar(int)
_OPT_INT = _Scalar(int, optional=True)
_BOOL = _Scalar(bool)
_OPT_BOOL = _Scalar(bool, optional=True)
_UINT16 = _Scalar(int, low=0, high=65535)
_STR_LIST = _List(_STR)


@dataclass
class File:
    """A downloadable file with its architecture and optional digest."""

    location: str = _field("location", _STR, omitempty=False)
    arch: str = _field("arch", _STR)
    digest: str = _field("digest", _STR)


@dataclass
class Kernel(File):
    cmdline: str = _field("cmdline", _STR)


@dataclass
class Image(File):
    kernel: Kernel | None = _field("kernel", _Struct(Kernel, optional=True))
    initrd: File | None = _field("initrd", _Struct(File, optional=True))


@dataclass
class Disk:
    name: str = _field("name", _STR, omitempty=False)
    format: bool | None = _field("format", _OPT_BOOL)
    fs_type: str | None = _field("fsType", _OPT_STR)
    fs_args: list[str] = _field("fsArgs", _STR_LIST)


@dataclass
class SSHFS:
    cache: bool | None = _field("cache", _OPT_BOOL)
    follow_symlinks: bool | None = _field("followSymlinks", _OPT_BOOL)
    sftp_driver: str | None = _field("sftpDriver", _OPT_STR)


@dataclass
class NineP:
    security_model: str | None = _field("securityModel", _OPT_STR)
    protocol_version: str | None = _field("protocolVersion", _OPT_STR)
    msize: str | None = _field("msize", _OPT_STR)
    cache: str | None = _field("cache", _OPT_STR)


@dataclass
class Virtiofs:
    queue_size: int | None = _field("queueSize", _OPT_INT)


@dataclass
class Mount:
    location: str = _field("location", _STR, omitempty=False)
    mount_point: str = _field("mountPoint", _STR)
    writable: bool | None = _field("writable", _OPT_BOOL)
    sshfs: SSHFS = _field("sshfs", _Struct(SSHFS))
    nine_p: NineP = _field("9p", _Struct(NineP))
    virtiofs: Virtiofs = _field("virtiofs", _Struct(Virtiofs))


@dataclass
class SSH:
    local_port: int | None = _field("localPort", _OPT_INT)
    load_dot_ssh_pub_keys: bool | None = _field("loadDotSSHPubKeys", _OPT_BOOL)
    forward_agent: bool | None = _field("forwardAgent", _OPT_BOOL)
    forward_x11: bool | None = _field("forwardX11", _OPT_BOOL)
    forward_x11_trusted: bool | None = _field("forwardX11Trusted", _OPT_BOOL)


@dataclass
class Firmware:
    legacy_bios: bool | None = _field("legacyBIOS", _OPT_BOOL)


@dataclass
class Audio:
    device: str | None = _field("device", _OPT_STR)


@dataclass
class VNCOptions:
    display: str | None = _field("display", _OPT_STR)


@dataclass
class Video:
    display: str | None = _field("display", _OPT_STR)
    vnc: VNCOptions = _field("vnc", _Struct(VNCOptions), omitempty=False)


@dataclass
class Provision:
    mode: str = _field("mode", _STR, omitempty=False)
    skip_default_dependency_resolution: bool | None = _field("skipDefaultDependencyResolution", _OPT_BOOL)
    script: str = _field("script", _STR, omitempty=False)


@dataclass
class Containerd:
    system: bool | None = _field("system", _OPT_BOOL)
    user: bool | None = _field("user", _OPT_BOOL)
    archives: list[File] = _field("archives", _List(_Struct(File)))


@dataclass
class Probe:
    mode: str = _field("mode", _STR, omitempty=False)
    description: str = _field("description", _STR, omitempty=False)
    script: str = _field("script", _STR, omitempty=False)
    hint: str = _field("hint", _STR, omitempty=False)


@dataclass
class PortForward:
    guest_ip_must_be_zero: bool = _field("guestIPMustBeZero", _BOOL)
    guest_ip: IPAddress | None = _field("guestIP", _IP())
    guest_port: int = _field("guestPort", _INT)
    guest_port_range: tuple[int, int] = _field("guestPortRange", _PortRange())
    guest_socket: str = _field("guestSocket", _STR)
    host_ip: IPAddress | None = _field("hostIP", _IP())
    host_port: int = _field("hostPort", _INT)
    host_port_range: tuple[int, int] = _field("hostPortRange", _PortRange())
    host_socket: str = _field("hostSocket", _STR)
    proto: str = _field("proto", _STR)
    reverse: bool = _field("reverse", _BOOL)
    ignore: bool = _field("ignore", _BOOL)


@dataclass
class CopyToHost:
    guest_file: str = _field("guest", _STR)
    host_file: str = _field("host", _STR)
    delete_on_stop: bool = _field("deleteOnStop", _BOOL)


@dataclass
class Network:
    """A guest network interface; lima, socket and vnl are mutually exclusive."""

    lima: str = _field("lima", _STR)
    socket: str = _field("socket", _STR)
    vz_nat: bool | None = _field("vzNAT", _OPT_BOOL)
    vnl_deprecated: str = _field("vnl", _STR)
    switch_port_deprecated: int = _field("switchPort", _UINT16)
    mac_address: str = _field("macAddress", _STR)
    interface: str = _field("interface", _STR)


@dataclass
class HostResolver:
    enabled: bool | None = _field("enabled", _OPT_BOOL)
    ipv6: bool | None = _field("ipv6", _OPT_BOOL)
    hosts: dict[str, str] = _field("hosts", _StrMap())


@dataclass
class CACertificates:
    remove_defaults: bool | None = _field("removeDefaults", _OPT_BOOL)
    files: list[str] = _field("files", _STR_LIST)
    certs: list[str] = _field("certs", _STR_LIST)


@dataclass
class Rosetta:
    enabled: bool | None = _field("enabled", _OPT_BOOL, omitempty=False)
    binfmt: bool | None = _field("binfmt", _OPT_BOOL, omitempty=False)


@dataclass
class LimaYAML:
    """An instance configuration; unset optional fields are None."""

    vm_type: str | None = _field("vmType", _OPT_STR)
    os: str | None = _field("os", _OPT_STR)
    arch: str | None = _field("arch", _OPT_STR)
    images: list[Image] = _field("images", _List(_Struct(Image)), omitempty=False)
    cpu_type: dict[str, str] = _field("cpuType", _StrMap())
    cpus: int | None = _field("cpus", _OPT_INT)
    memory: str | None = _field("memory", _OPT_STR)
    disk: str | None = _field("disk", _OPT_STR)
    additional_disks: list[Disk] = _field("additionalDisks", _List(_DiskCodec(Disk)))
    mounts: list[Mount] = _field("mounts", _List(_Struct(Mount)))
    mount_type: str | None = _field("mountType", _OPT_STR)
    ssh: SSH = _field("ssh", _Struct(SSH))
    firmware: Firmware = _field("firmware", _Struct(Firmware))
    audio: Audio = _field("audio", _Struct(Audio))
    video: Video = _field("video", _Struct(Video))
    provision: list[Provision] = _field("provision", _List(_Struct(Provision)))
    containerd: Containerd = _field("containerd", _Struct(Containerd))
    guest_install_prefix: str | None = _field("guestInstallPrefix", _OPT_STR)
    probes: list[Probe] = _field("probes", _List(_Struct(Probe)))
    port_forwards: list[PortForward] = _field("portForwards", _List(_Struct(PortForward)))
    copy_to_host: list[CopyToHost] = _field("copyToHost", _List(_Struct(CopyToHost)))
    message: str = _field("message", _STR)
    networks: list[Network] = _field("networks", _List(_Struct(Network)))
    env: dict[str, str] = _field("env", _StrMap())
    dns: list[IPAddress | None] = _field("dns", _List(_IP()))
    host_resolver: HostResolver = _field("hostResolver", _Struct(HostResolver))
    propagate_proxy_env: bool | None = _field("propagateProxyEnv", _OPT_BOOL)
    ca_certificates: CACertificates = _field("caCerts", _Struct(CACertificates))
    rosetta: Rosetta = _field("rosetta", _Struct(Rosetta))


def from_mapping(data: Mapping[str, Any] | None) -> LimaYAML:
    """Build a configuration from parsed YAML.

    Wrongly typed values raise ValueError; unknown fields are ignored with a
    warning.
    """
    if data is None:
        return LimaYAML()
    if not isinstance(data, Mapping):
        raise ValueError(f"document must be a mapping, got {data!r}")
    unknown: list[str] = []
    config = _decode_struct(LimaYAML, data, "", unknown)
    if unknown:
        _log.warning(
            "Non-strict YAML is deprecated and will be unsupported in a future version: unknown fields %s",
            ", ".join(unknown),
        )
    return config


def to_mapping(config: LimaYAML) -> dict[str, Any]:
    """The YAML mapping form of ``config``, leaving out unset fields."""
    return _encode_struct(config)