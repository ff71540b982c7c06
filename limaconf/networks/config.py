"""Host network definitions: parsing, defaults and daemon command lines."""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import shutil
import string
from dataclasses import dataclass, field, replace
from typing import Any, Union

import yaml

__all__ = [
    "Paths",
    "Network",
    "DaemonUser",
    "NetworksConfig",
    "parse_config",
    "default_config_text",
    "default_config",
    "fill_defaults",
    "config_file",
    "load_config",
]

_log = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

SLIRP_NIC_NAME = "eth0"
SLIRP_NETWORK = "192.168.5.0/24"
SLIRP_GATEWAY = "192.168.5.2"
SLIRP_IP_ADDRESS = "192.168.5.15"

MODE_USER_V2 = "user-v2"
MODE_HOST = "host"
MODE_SHARED = "shared"
MODE_BRIDGED = "bridged"

VDE_SWITCH = "vde_switch"
VDE_VMNET = "vde_vmnet"
SOCKET_VMNET = "socket_vmnet"

CONFIG_FILE_NAME = "networks.yaml"

_PATH_KEYS = {
    "socketVMNet": "socket_vmnet",
    "vdeSwitch": "vde_switch",
    "vdeVMNet": "vde_vmnet",
    "varRun": "var_run",
    "sudoers": "sudoers",
}
_NETWORK_KEYS = {"mode", "interface", "gateway", "dhcpEnd", "netmask"}
_TOP_KEYS = {"paths", "group", "networks"}

_SOCKET_VMNET_CANDIDATES = (
    "/opt/socket_vmnet/bin/socket_vmnet",
    "socket_vmnet",
    "/usr/local/opt/socket_vmnet/bin/socket_vmnet",
    "/opt/homebrew/opt/socket_vmnet/bin/socket_vmnet",
)

_DEFAULT_TEMPLATE = string.Template(
    """\
# Paths to the network daemons and their working directories.
# Entries must be absolute paths without whitespace.
paths:
  socketVMNet: $socket_vmnet
  vdeSwitch: /opt/vde/bin/vde_switch
  vdeVMNet: /opt/vde/bin/vde_vmnet
  varRun: /private/var/run/lima
  sudoers: /etc/sudoers.d/lima

group: everyone

networks:
  user-v2:
    mode: user-v2
    gateway: 192.168.104.1
    netmask: 255.255.255.0
  shared:
    mode: shared
    gateway: 192.168.105.1
    dhcpEnd: 192.168.105.254
    netmask: 255.255.255.0
  bridged:
    mode: bridged
    interface: en0
  host:
    mode: host
    gateway: 192.168.106.1
    dhcpEnd: 192.168.106.254
    netmask: 255.255.255.0
"""
)


@dataclass
class Paths:
    """Locations of the network daemons and related files."""

    socket_vmnet: str = ""
    vde_switch: str = ""
    vde_vmnet: str = ""
    var_run: str = ""
    sudoers: str = ""


@dataclass
class Network:
    """One named network definition."""

    mode: str = ""
    interface: str = ""
    gateway: IPAddress | None = None
    dhcp_end: IPAddress | None = None
    netmask: IPAddress | None = None


@dataclass(frozen=True)
class DaemonUser:
    """The account a network daemon runs as."""

    user: str
    group: str
    uid: int
    gid: int


def _format_ip(ip: IPAddress | None) -> str:
    return "<nil>" if ip is None else str(ip)


def _lookup_user(name: str) -> DaemonUser:
    import grp
    import pwd

    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        raise LookupError(f'could not find user "{name}"') from None
    try:
        group_name = grp.getgrgid(entry.pw_gid).gr_name
    except KeyError:
        group_name = str(entry.pw_gid)
    return DaemonUser(user=entry.pw_name, group=group_name, uid=entry.pw_uid, gid=entry.pw_gid)


def _lookup_group(name: str) -> tuple[str, int]:
    import grp

    try:
        entry = grp.getgrnam(name)
    except KeyError:
        raise LookupError(f'could not find group "{name}"') from None
    return entry.gr_name, entry.gr_gid


@dataclass
class NetworksConfig:
    """The contents of the networks configuration file."""

    paths: Paths = field(default_factory=Paths)
    group: str = ""
    networks: dict[str, Network] = field(default_factory=dict)

    def check(self, name: str) -> None:
        """Raise LookupError unless ``name`` is a defined network."""
        if name not in self.networks:
            raise LookupError(f'network "{name}" is not defined')

    def usernet(self, name: str) -> bool:
        """Whether the named network is a user-mode (user-v2) network."""
        self.check(name)
        return self.networks[name].mode == MODE_USER_V2

    def daemon_path(self, daemon: str) -> str:
        """The configured executable path of ``daemon``."""
        paths = {
            VDE_SWITCH: self.paths.vde_switch,
            VDE_VMNET: self.paths.vde_vmnet,
            SOCKET_VMNET: self.paths.socket_vmnet,
        }
        if daemon not in paths:
            raise ValueError(f'unknown daemon type "{daemon}"')
        return paths[daemon]

    def is_daemon_installed(self, daemon: str) -> bool:
        """Whether the configured path of ``daemon`` is an executable."""
        path = self.daemon_path(daemon)
        if not path:
            return False
        return shutil.which(path) is not None

    def _installed(self, daemon: str) -> bool:
        try:
            return self.is_daemon_installed(daemon)
        except ValueError:
            return False

    def sock(self, name: str) -> str:
        return os.path.join(self.paths.var_run, f"socket_vmnet.{name}")

    def vde_sock(self, name: str) -> str:
        return os.path.join(self.paths.var_run, f"{name}.ctl")

    def pid_file(self, name: str, daemon: str) -> str:
        trimmed = daemon.removeprefix("vde_")
        return os.path.join(self.paths.var_run, f"{name}_{trimmed}.pid")

    def log_file(self, name: str, daemon: str, stream: str, networks_dir: str) -> str:
        trimmed = daemon.removeprefix("vde_")
        return os.path.join(networks_dir, f"{name}_{trimmed}.{stream}.log")

    def user(self, daemon: str) -> DaemonUser:
        """The account ``daemon`` has to run as."""
        if not self._installed(daemon):
            try:
                path = self.daemon_path(daemon)
            except ValueError:
                path = ""
            raise RuntimeError(f'daemon "{daemon}" (path="{path}") is not available')
        if daemon == VDE_SWITCH:
            account = _lookup_user("daemon")
            group_name, gid = _lookup_group(self.group)
            return replace(account, group=group_name, gid=gid)
        return _lookup_user("root")

    def mkdir_cmd(self) -> str:
        return f"/bin/mkdir -m 775 -p {self.paths.var_run}"

    def start_cmd(self, name: str, daemon: str) -> str:
        """The command line that starts ``daemon`` for the named network."""
        if not self._installed(daemon):
            raise RuntimeError(f'daemon "{daemon}" is not available')
        if daemon == VDE_SWITCH:
            return (
                f"{self.paths.vde_switch} --pidfile={self.pid_file(name, VDE_SWITCH)} "
                f"--sock={self.vde_sock(name)} --group={self.group} --dirmode=0770 --nostdin"
            )
        if daemon == VDE_VMNET:
            binary, group_flag, socket = self.paths.vde_vmnet, "--vde-group", self.vde_sock(name)
        else:
            binary, group_flag, socket = self.paths.socket_vmnet, "--socket-group", self.sock(name)
        nw = self.networks.get(name, Network())
        cmd = (
            f"{binary} --pidfile={self.pid_file(name, daemon)} "
            f"{group_flag}={self.group} --vmnet-mode={nw.mode}"
        )
        if nw.mode == MODE_BRIDGED:
            cmd += f" --vmnet-interface={nw.interface}"
        elif nw.mode in (MODE_HOST, MODE_SHARED):
            cmd += (
                f" --vmnet-gateway={_format_ip(nw.gateway)}"
                f" --vmnet-dhcp-end={_format_ip(nw.dhcp_end)}"
                f" --vmnet-mask={_format_ip(nw.netmask)}"
            )
        return f"{cmd} {socket}"

    def stop_cmd(self, name: str, daemon: str) -> str:
        return f"/usr/bin/pkill -F {self.pid_file(name, daemon)}"


def _check_keys(mapping: dict[str, Any], allowed: set[str], where: str) -> None:
    for key in mapping:
        if key not in allowed:
            raise ValueError(f'unknown field "{key}" in {where}')


def _as_mapping(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{where} must be a mapping")
    return value


def _as_string(value: Any, where: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{where} must be a string")
    return value


def _as_ip(value: Any, where: str) -> IPAddress | None:
    if value is None or value == "":
        return None
    try:
        return ipaddress.ip_address(str(value))
    except ValueError as exc:
        raise ValueError(f"{where}: {exc}") from exc


def _parse_network(name: str, data: Any) -> Network:
    where = f"networks.{name}"
    mapping = _as_mapping(data, where)
    _check_keys(mapping, _NETWORK_KEYS, where)
    return Network(
        mode=_as_string(mapping.get("mode"), f"{where}.mode"),
        interface=_as_string(mapping.get("interface"), f"{where}.interface"),
        gateway=_as_ip(mapping.get("gateway"), f"{where}.gateway"),
        dhcp_end=_as_ip(mapping.get("dhcpEnd"), f"{where}.dhcpEnd"),
        netmask=_as_ip(mapping.get("netmask"), f"{where}.netmask"),
    )


def parse_config(text: str | bytes) -> NetworksConfig:
    """Parse networks YAML strictly; unknown fields are errors."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(str(exc)) from exc
    top = _as_mapping(data, "document")
    _check_keys(top, _TOP_KEYS, "document")

    paths_data = _as_mapping(top.get("paths"), "paths")
    _check_keys(paths_data, set(_PATH_KEYS), "paths")
    paths = Paths(
        **{attr: _as_string(paths_data.get(key), f"paths.{key}") for key, attr in _PATH_KEYS.items()}
    )
    networks = {
        str(name): _parse_network(str(name), nw)
        for name, nw in _as_mapping(top.get("networks"), "networks").items()
    }
    return NetworksConfig(paths=paths, group=_as_string(top.get("group"), "group"), networks=networks)


def _find_socket_vmnet() -> str:
    for candidate in _SOCKET_VMNET_CANDIDATES:
        found = shutil.which(candidate)
        if found:
            return os.path.realpath(found)
        _log.debug('Failed to look up socket_vmnet path "%s"', candidate)
    return _SOCKET_VMNET_CANDIDATES[0]


def default_config_text() -> str:
    """The YAML text of the default networks configuration."""
    return _DEFAULT_TEMPLATE.substitute(socket_vmnet=json.dumps(_find_socket_vmnet()))


def default_config() -> NetworksConfig:
    return parse_config(default_config_text())


def fill_defaults(config: NetworksConfig) -> NetworksConfig:
    """Return ``config`` with a user-v2 network added if it has none."""
    networks = dict(config.networks)
    if not any(nw.mode == MODE_USER_V2 for nw in networks.values()):
        networks[MODE_USER_V2] = default_config().networks[MODE_USER_V2]
    return replace(config, networks=networks)


def config_file(config_dir: str | os.PathLike[str]) -> str:
    return os.path.join(os.fspath(config_dir), CONFIG_FILE_NAME)


def load_config(config_dir: str | os.PathLike[str]) -> NetworksConfig:
    """Load the networks file in ``config_dir``, writing the default if absent."""
    path = config_file(config_dir)
    try:
        os.stat(path)
    except FileNotFoundError:
        directory = os.path.dirname(path)
        try:
            os.makedirs(directory, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise OSError(f'could not create "{directory}" directory: {exc}') from exc
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(default_config_text())

    with open(path, "rb") as handle:
        raw = handle.read()
    try:
        config = parse_config(raw)
    except ValueError as exc:
        raise ValueError(f'cannot parse "{path}": {exc}') from exc
    try:
        return fill_defaults(config)
    except ValueError as exc:
        raise ValueError(f'cannot fill default "{path}": {exc}') from exc