import os

import pytest

from nmobfs.lib import LoggerConfig
from nmobfs.lock import ExclusiveLock, LockContention, LockError

LoggerConfig(True, False)


def test_second_holder_fails_fast(tmp_path):
    path = str(tmp_path / "run" / "obfuscation.lock")
    first = ExclusiveLock(path)
    second = ExclusiveLock(path)

    with first:
        assert first.held
        with pytest.raises(LockContention):
            second.acquire()
        assert not second.held

    with second:
        assert second.held
    assert not second.held


def test_released_on_error(tmp_path):
    path = str(tmp_path / "obfuscation.lock")
    lock = ExclusiveLock(path)

    with pytest.raises(RuntimeError):
        with lock:
            raise RuntimeError("boom")

    assert not lock.held
    ExclusiveLock(path).check()


def test_lock_directory_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    with pytest.raises(LockError):
        ExclusiveLock(str(blocker / "obfuscation.lock")).acquire()


def test_release_without_acquire_is_harmless(tmp_path):
    ExclusiveLock(str(tmp_path / "obfuscation.lock")).release()


def test_failed_pid_write_releases_lock(tmp_path, monkeypatch):
    path = str(tmp_path / "obfuscation.lock")

    def broken(fd, length):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(os, "ftruncate", broken)
    with pytest.raises(LockError):
        ExclusiveLock(path).acquire()
    monkeypatch.undo()

    with ExclusiveLock(path) as lock:
        assert lock.held
