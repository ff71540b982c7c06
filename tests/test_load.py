import pytest

from limaconf.limayaml.load import load, parse_yaml

ERROR_YAML = """
provision:
- mode: system
  script: |
    #!/bin/sh
    echo one
- mode: system
    #!/bin/sh
    echo two
- mode: system
  script: |
    #!/bin/sh
    echo three
"""


def test_load_empty(tmp_path):
    y = load(b"", "empty.yaml", tmp_path)
    assert y.vm_type == "qemu"
    assert y.os == "Linux"


def test_load_error(tmp_path):
    with pytest.raises(ValueError, match="failed to unmarshal YAML"):
        load(ERROR_YAML.encode(), "error.yaml", tmp_path)


def test_load_disk_string(tmp_path):
    y = load("additionalDisks:\n- name\n", "disk.yaml", tmp_path)
    assert len(y.additional_disks) == 1
    disk = y.additional_disks[0]
    assert disk.name == "name"
    assert disk.format is None
    assert disk.fs_type is None
    assert disk.fs_args == []


def test_load_disk_struct(tmp_path):
    text = """
additionalDisks:
- name: "name"
  format: false
  fsType: "xfs"
  fsArgs: ["-i","size=512"]
"""
    y = load(text, "disk.yaml", tmp_path)
    assert len(y.additional_disks) == 1
    disk = y.additional_disks[0]
    assert disk.name == "name"
    assert disk.format is False
    assert disk.fs_type == "xfs"
    assert disk.fs_args == ["-i", "size=512"]


def test_duplicate_keys_rejected():
    with pytest.raises(ValueError, match="duplicate key"):
        parse_yaml("cpus: 2\ncpus: 3\n", "dup")


def test_wrong_type_rejected():
    with pytest.raises(ValueError, match=r"failed to unmarshal YAML \(bad\)"):
        parse_yaml("cpus: many\n", "bad")


def test_default_and_override_files_are_mixed(tmp_path):
    (tmp_path / "default.yaml").write_text("cpus: 3\nmemory: 3GiB\n")
    (tmp_path / "override.yaml").write_text("cpus: 5\n")
    y = load("cpus: 2\ndisk: 50GiB\n", "inst/lima.yaml", tmp_path)
    assert y.cpus == 5
    assert y.memory == "3GiB"
    assert y.disk == "50GiB"


def test_default_file_used_when_main_unset(tmp_path):
    (tmp_path / "default.yaml").write_text("guestInstallPrefix: /opt\n")
    y = load("{}", "inst/lima.yaml", tmp_path)
    assert y.guest_install_prefix == "/opt"


def test_broken_default_file_is_an_error(tmp_path):
    (tmp_path / "default.yaml").write_text("cpus: [\n")
    with pytest.raises(ValueError, match="default file"):
        load("", "inst/lima.yaml", tmp_path)