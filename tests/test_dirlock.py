import fcntl
import os

import pytest

from limaconf.dirlock import dir_lock


def _try_lock(path) -> bool:
    fd = os.open(path, os.O_RDONLY)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        return True
    except BlockingIOError:
        return False
    finally:
        os.close(fd)


def test_lock_excludes_other_holders(tmp_path):
    with dir_lock(tmp_path):
        assert _try_lock(tmp_path) is False


def test_lock_released_after_block(tmp_path):
    with dir_lock(tmp_path):
        held = _try_lock(tmp_path)
    assert held is False
    assert _try_lock(tmp_path) is True


def test_lock_released_when_block_raises(tmp_path):
    with pytest.raises(RuntimeError, match="boom"):
        with dir_lock(tmp_path):
            raise RuntimeError("boom")
    assert _try_lock(tmp_path) is True


def test_missing_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        with dir_lock(tmp_path / "missing"):
            pass


def test_block_runs_under_lock(tmp_path):
    seen = []
    with dir_lock(str(tmp_path)):
        seen.append(_try_lock(tmp_path))
    assert seen == [False]