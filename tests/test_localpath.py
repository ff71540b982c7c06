import os

import pytest

from limaconf.localpath import expand


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    return tmp_path


def test_tilde_alone_is_home(home):
    assert expand("~") == str(home)


def test_tilde_slash_prefix(home):
    assert expand("~/foo") == str(home / "foo")


def test_tilde_path_is_normalised(home):
    assert expand("~/foo/../bar") == str(home / "bar")


def test_other_user_home_is_rejected(home):
    with pytest.raises(ValueError, match="unexpandable path"):
        expand("~foo/bar")


def test_empty_path_is_rejected(home):
    with pytest.raises(ValueError, match="empty path"):
        expand("")


def test_relative_path_is_made_absolute(home, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = expand(os.path.join("a", "b"))
    assert result == str(tmp_path / "a" / "b")
    assert os.path.isabs(result)


def test_absolute_path_is_kept(home, tmp_path):
    target = str(tmp_path / "data")
    assert expand(target) == target