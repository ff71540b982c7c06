"""Security checks of the paths named in the networks configuration."""

from __future__ import annotations

import json
import os
import stat
import sys

from .config import NetworksConfig

__all__ = ["validate_config", "find_base_directory", "validate_path"]

_PATH_FIELDS = (
    ("socketVMNet", "socket_vmnet"),
    ("vdeSwitch", "vde_switch"),
    ("vdeVMNet", "vde_vmnet"),
    ("varRun", "var_run"),
    ("sudoers", "sudoers"),
)
_MAY_BE_MISSING = {"sudoers", "socketVMNet", "vdeVMNet", "vdeSwitch"}


def _quote(text: str) -> str:
    return json.dumps(text)


def _parent(path: str) -> str:
    return os.path.dirname(path) or "."


def validate_config(config: NetworksConfig) -> None:
    """Raise ValueError unless every configured path is secure and enough daemons exist."""
    values: dict[str, str] = {}
    missing: set[str] = set()
    for name, attr in _PATH_FIELDS:
        path = getattr(config.paths, attr)
        values[name] = path
        is_var_run = name == "varRun"
        # varRun is created securely later; only its existing ancestors are checked.
        target = find_base_directory(path) if is_var_run else path
        try:
            validate_path(target, is_var_run)
        except FileNotFoundError as exc:
            if name in _MAY_BE_MISSING:
                missing.add(name)
                continue
            raise ValueError(f"networks.yaml field `paths.{name}` error: {exc}") from exc
        except (OSError, ValueError, LookupError, RuntimeError) as exc:
            raise ValueError(f"networks.yaml field `paths.{name}` error: {exc}") from exc

    if "socketVMNet" in missing and "vdeVMNet" in missing:
        raise ValueError(
            f"networks.yaml: either {_quote(values['socketVMNet'])} (`paths.socketVMNet`) or "
            f"{_quote(values['vdeVMNet'])} (`paths.vdeVMNet`) has to be installed"
        )
    if "socketVMNet" in missing and "vdeVMNet" not in missing and "vdeSwitch" in missing:
        raise ValueError(
            f"networks.yaml: {_quote(values['vdeVMNet'])} (`paths.vdeVMNet`) requires "
            f"{_quote(values['vdeSwitch'])} (`paths.vdeSwitch`) to be installed"
        )


def find_base_directory(path: str) -> str:
    """Strip trailing components of ``path`` that do not exist."""
    while not os.path.lexists(path) and path != "/":
        path = _parent(path)
    return path


def _user(name: str):
    import pwd

    try:
        return pwd.getpwnam(name)
    except KeyError:
        raise LookupError(f'could not find user "{name}"') from None


def validate_path(path: str, allow_daemon_group_writable: bool = False) -> None:
    """Raise unless ``path`` and all its ancestors are owned and writable only by admins.

    A missing path raises FileNotFoundError; insecure paths raise ValueError.
    """
    while True:
        if path == "":
            return
        if not path.startswith("/"):
            raise ValueError(f"path {_quote(path)} is not an absolute path")
        if " " in path:
            raise ValueError(f"path {_quote(path)} contains whitespace")
        info = os.lstat(path)
        mode = info.st_mode
        kind = "dir" if stat.S_ISDIR(mode) else "file"
        if stat.S_ISLNK(mode):
            raise ValueError(f"{kind} {_quote(path)} is a symlink")
        if sys.platform != "darwin":
            raise RuntimeError("vmnet code must not be called on non-Darwin")

        _check_ownership(path, kind, info, allow_daemon_group_writable)

        if path == "/":
            return
        path = _parent(path)


def _check_ownership(path: str, kind: str, info: os.stat_result, allow_daemon_group_writable: bool) -> None:
    import grp
    import pwd

    mode = info.st_mode
    root = _user("root")
    try:
        admin = grp.getgrnam("admin")
    except KeyError:
        raise LookupError('could not find group "admin"') from None
    try:
        owner = pwd.getpwuid(info.st_uid)
    except KeyError:
        raise LookupError(f"unknown userid {info.st_uid}") from None

    owner_is_admin = owner.pw_uid == 0 or admin.gr_gid in os.getgrouplist(owner.pw_name, owner.pw_gid)
    if not owner_is_admin:
        raise ValueError(f"{kind} {_quote(path)} owner {info.st_uid} is not an admin")

    group_writable = mode & 0o020 != 0
    trusted_gids = {root.pw_gid, admin.gr_gid}
    if allow_daemon_group_writable:
        daemon = _user("daemon")
        if group_writable and info.st_gid not in trusted_gids | {daemon.pw_gid}:
            raise ValueError(
                f"{kind} {_quote(path)} is group-writable and group {info.st_gid} "
                "is not one of [wheel, admin, daemon]"
            )
        if stat.S_ISDIR(mode) and mode & 0o001 == 0 and (mode & 0o010 == 0 or info.st_gid != daemon.pw_gid):
            raise ValueError(
                f"{kind} {_quote(path)} is not executable by the {_quote(daemon.pw_name)} "
                f"(gid: {daemon.pw_gid}) group"
            )
    elif group_writable and info.st_gid not in trusted_gids:
        raise ValueError(
            f"{kind} {_quote(path)} is group-writable and group {info.st_gid} is not one of [wheel, admin]"
        )
    if mode & 0o002 != 0:
        raise ValueError(f"{kind} {_quote(path)} is world-writable")