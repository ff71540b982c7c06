"""Generation and verification of the sudoers fragment for network daemons."""

from __future__ import annotations

import json
import logging
import subprocess
import sys

from .config import SOCKET_VMNET, VDE_SWITCH, VDE_VMNET, NetworksConfig

__all__ = ["sudoers", "verify_sudo_access"]

_log = logging.getLogger(__name__)

_DAEMONS = (VDE_SWITCH, VDE_VMNET, SOCKET_VMNET)


def _quote(text: str) -> str:
    return json.dumps(text)


def sudoers(config: NetworksConfig) -> str:
    """The sudoers text allowing the group to manage every network's daemons.

    Networks appear in sorted order so the output is stable.
    """
    parts = [f"%{config.group} ALL=(root:wheel) NOPASSWD:NOSETENV: {config.mkdir_cmd()}\n"]
    for name in sorted(config.networks):
        parts.append("\n")
        parts.append(f"# Manage {_quote(name)} network daemons\n")
        for daemon in _DAEMONS:
            if not config.is_daemon_installed(daemon):
                continue
            account = config.user(daemon)
            parts.append("\n")
            parts.append(
                f"%{config.group} ALL=({account.user}:{account.group}) NOPASSWD:NOSETENV: \\\n"
            )
            parts.append(f"    {config.start_cmd(name, daemon)}, \\\n")
            parts.append(f"    {config.stop_cmd(name, daemon)}\n")
    return "".join(parts)


def _run(args: list[str]) -> None:
    try:
        subprocess.run(args, check=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except (subprocess.CalledProcessError, OSError) as exc:
        raise RuntimeError(f"failed to run [{' '.join(args)}]: {exc}") from exc


def _password_less_sudo(config: NetworksConfig) -> None:
    # Drop any cached credentials first so the check is meaningful.
    _run(["sudo", "-k"])
    for daemon in _DAEMONS:
        if not config.is_daemon_installed(daemon):
            continue
        account = config.user(daemon)
        _run(["sudo", "--user", account.user, "--group", account.group, "--non-interactive", "true"])


def verify_sudo_access(config: NetworksConfig, sudoers_file: str) -> None:
    """Raise RuntimeError unless the daemons can be managed through sudo.

    With no sudoers file, password-less sudo must work.  Otherwise the file
    must exist (or password-less sudo must work) and match :func:`sudoers`.
    """
    if not sudoers_file:
        try:
            _password_less_sudo(config)
        except RuntimeError as exc:
            raise RuntimeError(f"passwordLessSudo error: {exc}") from exc
        _log.debug("sudo doesn't seem to require a password")
        return

    hint = (
        f"run `{sys.argv[0]} sudoers >etc_sudoers.d_lima && "
        f"sudo install -o root etc_sudoers.d_lima {_quote(sudoers_file)}`)"
    )
    try:
        with open(sudoers_file, "rb") as handle:
            content = handle.read()
    except FileNotFoundError as exc:
        try:
            _password_less_sudo(config)
        except RuntimeError as err:
            _log.debug("%s does not exist; passwordLessSudo error: %s", _quote(sudoers_file), err)
            raise RuntimeError(
                f"can't read {_quote(sudoers_file)}: {err} (Hint: {hint})"
            ) from exc
        _log.debug("%s does not exist, but sudo doesn't seem to require a password", _quote(sudoers_file))
        return
    except OSError as exc:
        raise RuntimeError(f"can't read {_quote(sudoers_file)}: {exc} (Hint: {hint})") from exc

    if content != sudoers(config).encode("utf-8"):
        raise RuntimeError(
            f"sudoers file {_quote(sudoers_file)} is out of sync and must be regenerated (Hint: {hint})"
        )