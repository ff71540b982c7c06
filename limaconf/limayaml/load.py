"""Reading instance configurations and mixing in default and override files."""

from __future__ import annotations

import logging
import os

import yaml

from .defaults import fill_default
from .model import LimaYAML, from_mapping

__all__ = ["parse_yaml", "load", "DEFAULT_FILE", "OVERRIDE_FILE"]

_log = logging.getLogger(__name__)

DEFAULT_FILE = "default.yaml"
OVERRIDE_FILE = "override.yaml"


class _StrictLoader(yaml.SafeLoader):
    """A safe loader that rejects duplicate mapping keys."""

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen: set = set()
            for key_node, _ in node.value:
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=True)
                try:
                    duplicate = key in seen
                except TypeError:
                    continue
                if duplicate:
                    raise yaml.constructor.ConstructorError(
                        "while constructing a mapping",
                        node.start_mark,
                        f"found duplicate key {key!r}",
                        key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def parse_yaml(data: bytes | str, comment: str) -> LimaYAML:
    """Parse a configuration document; ``comment`` names it in error messages."""
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        raw = yaml.load(text, Loader=_StrictLoader)
        return from_mapping(raw)
    except (yaml.YAMLError, ValueError) as exc:
        raise ValueError(f"failed to unmarshal YAML ({comment}): {exc}") from exc


def _read_optional(path: str, kind: str, file_path: str) -> LimaYAML:
    try:
        with open(path, "rb") as handle:
            content = handle.read()
    except FileNotFoundError:
        return LimaYAML()
    _log.debug('Mixing "%s" into "%s"', path, file_path)
    return parse_yaml(content, f'{kind} file "{path}"')


def load(data: bytes | str, file_path: str, config_dir: str | os.PathLike[str] | None = None) -> LimaYAML:
    """Parse ``data`` and fill unset fields with defaults.

    When ``config_dir`` is given, its default and override files (if present)
    are mixed in.  The result is not validated.
    """
    y = parse_yaml(data, f'main file "{file_path}"')
    d = LimaYAML()
    o = LimaYAML()
    if config_dir is not None:
        directory = os.fspath(config_dir)
        d = _read_optional(os.path.join(directory, DEFAULT_FILE), "default", file_path)
        o = _read_optional(os.path.join(directory, OVERRIDE_FILE), "override", file_path)
    return fill_default(y, d, o, file_path)