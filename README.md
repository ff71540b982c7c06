# limaconf

A library for describing, completing and checking the configuration of a
Linux virtual machine instance, and for working with the host-side network
definitions such an instance uses.

## What is in it

### Instance configuration — `limaconf.limayaml`

- `model`: dataclasses for the instance document (`LimaYAML`, `Image`,
  `Kernel`, `File`, `Disk`, `Mount`, `SSH`, `Video`, `Provision`, `Probe`,
  `PortForward`, `CopyToHost`, `Network`, `HostResolver`, `CACertificates`,
  `Rosetta`, …). `from_mapping` builds a `LimaYAML` from parsed YAML
  (wrongly typed values raise `ValueError`, unknown fields are ignored with a
  warning; an entry of `additionalDisks` may be a bare disk name).
  `to_mapping` gives back the mapping form, leaving out unset fields.
- `load`: `parse_yaml(data, comment)` parses a document, rejecting duplicate
  keys; `load(data, file_path, config_dir=None)` parses the instance file,
  mixes in `default.yaml` and `override.yaml` from `config_dir` when given and
  present, and fills in defaults. It does not validate.
- `defaults`: `fill_default(y, d, o, file_path)` fills the unset fields of
  `y` from `d` (or built-in defaults) and overrides them from `o`. Maps are
  merged d, y, o; most lists are concatenated o, y, d; mounts and networks
  are combined in d, y, o order, merging entries with the same location or
  interface; DNS comes from the highest-priority document that has any.
- `platform`: host detection (`resolve_arch`, `resolve_os`,
  `resolve_vm_type`, `is_native_arch`, `is_accel_os`, …), built-in defaults
  (`default_cpus`, `default_memory_as_string`,
  `default_containerd_archives`, …), size helpers (`bytes_size`,
  `ram_in_bytes`), `mac_address` for stable locally administered addresses,
  and the in-place fillers `fill_port_forward_defaults` and
  `fill_copy_to_host_defaults` (which expand `{{.Home}}`, `{{.Dir}}`,
  `{{.Name}}`, `{{.UID}}`, `{{.User}}` placeholders).
- `validate`: `validate(config, warn=False, networks_config=None)` raises
  `ValueError` naming the offending field. Networks that name a `lima`
  network need a `networks_config` to check against. `validate_port` and
  `validate_network` are usable on their own.

### Host networks — `limaconf.networks`

- `config`: `NetworksConfig` with its `Paths`, `group` and named `Network`
  entries; `parse_config` (strict: unknown fields are errors),
  `default_config`, `fill_defaults` (adds a `user-v2` network if none),
  `load_config(config_dir)` (writes the default `networks.yaml` if absent).
  Methods build paths and command lines for the network daemons: `sock`,
  `vde_sock`, `pid_file`, `log_file`, `mkdir_cmd`, `start_cmd`, `stop_cmd`,
  and `user` looks up the account a daemon runs as.
- `sudoers`: `sudoers(config)` renders a sudoers fragment for the installed
  daemons; `verify_sudo_access(config, sudoers_file)` checks that file
  against it, or runs `sudo` to see whether password-less sudo works.
- `pathcheck`: `validate_config`, `validate_path` and `find_base_directory`
  check that daemon paths and their ancestors are owned and writable only by
  administrators. Ownership checks run on macOS only; elsewhere
  `validate_path` raises `RuntimeError`.
- `usernet`: socket, PID and lease file paths for user-mode networks,
  `subnet_cidr`, `subnet`, `parse_subnet`, `gateway_ip`, `dns_ip`, and
  `resolve_search_domain` / `search_domains` for the search domains of a
  resolv.conf file.
- `dnshosts`: `extract_zones` turns a mapping of host names to addresses
  (or to other host names) into `Zone` and `Record` objects; `host_ip`
  follows aliases.

### Small helpers

- `limaconf.localpath.expand` expands `~` and `~/…` and makes the path
  absolute (`~user/…` is rejected).
- `limaconf.dirlock.dir_lock` is a context manager holding an exclusive lock
  on a directory (`flock` on POSIX, a `<dir>.lock` file on Windows).
- `limaconf.logprop.propagate_json` re-emits a JSON log line through a
  `logging.Logger` at the level it names, dropping lines older than a start
  time; it returns the level used.

## Install

```
pip install limaconf
```

## Examples

Load and check an instance configuration:

```python
from pathlib import Path
from limaconf.limayaml.load import load
from limaconf.limayaml.validate import validate

path = Path("instances/default/lima.yaml")
config = load(path.read_bytes(), str(path), config_dir="config")
validate(config, warn=True)
print(config.cpus, config.memory, config.mount_type)
```

Work with the networks configuration:

```python
from limaconf.networks.config import default_config

networks = default_config()
networks.check("shared")
print(networks.stop_cmd("shared", "socket_vmnet"))
```

Compute user-mode network addresses:

```python
from limaconf.networks.usernet import parse_subnet, gateway_ip, dns_ip

subnet = parse_subnet("192.168.5.0/24")
print(gateway_ip(subnet), dns_ip(subnet))   # 192.168.5.2 192.168.5.3
```

Build DNS zones from host mappings:

```python
from limaconf.networks.dnshosts import extract_zones

for zone in extract_zones({"host.lima.internal": "192.168.5.2", "localhost": "127.0.0.1"}):
    print(zone.name, zone.default_ip, zone.records)
```

## What it does not do

This is a library only; it has no command-line program. It does not create,
start or stop virtual machines, convert disk images, or run the network
daemons or a user-mode network stack: it builds the paths and command lines
for them and checks their configuration, and `verify_sudo_access` is the only
part that runs other programs (`sudo`).

## Running the tests

```
pip install -e ".[test]"
pytest
```