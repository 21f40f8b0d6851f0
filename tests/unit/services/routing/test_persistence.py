import os

import pytest

from localcanary.services.routing.persistence import FileStateBackend


def test_save_and_load(tmp_path):
    backend = FileStateBackend(str(tmp_path / "nested" / "routing.state"))

    backend.save({"functions": {}, "reserved_limits": {"fn": 2}})

    assert backend.load() == {"functions": {}, "reserved_limits": {"fn": 2}}
    assert os.listdir(tmp_path / "nested") == ["routing.state"]


def test_load_missing_file(tmp_path):
    assert FileStateBackend(str(tmp_path / "routing.state")).load() is None


def test_failed_save_keeps_previous_state(tmp_path):
    path = str(tmp_path / "routing.state")
    backend = FileStateBackend(path)
    backend.save({"version": 1})

    class _FailingEncoder:
        def encode(self, obj, file):
            file.write(b"partial")
            raise IOError("disk full")

    failing = FileStateBackend(path, encoder=_FailingEncoder())
    with pytest.raises(IOError, match="disk full"):
        failing.save({"version": 2})

    assert backend.load() == {"version": 1}
    assert os.listdir(tmp_path) == ["routing.state"]


def test_path_required():
    with pytest.raises(ValueError):
        FileStateBackend("")
