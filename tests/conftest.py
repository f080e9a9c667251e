import copy
import stat
import sys

import pytest

from pbrtapi.config.config import config_class
from pbrtapi.utils.folder import ModelStore

MODEL_ID = "3f2a9c1d-5b6e-4f70-8a91-b2c3d4e5f601"
PREFIX = "3f2a9c1d_"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 20

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake tools are POSIX shell scripts")


@pytest.fixture
def uploads(tmp_path):
    root = tmp_path / "uploads"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def root_str(uploads):
    return str(uploads).replace("\\", "/")


@pytest.fixture
def store(uploads):
    return ModelStore(uploads)


@pytest.fixture
def model_dir(uploads):
    directory = uploads / "models" / MODEL_ID
    directory.mkdir(parents=True)
    return directory


@pytest.fixture
def make_executable(tmp_path):
    """Write a /bin/sh script and return its path."""
    def _make(name, body):
        path = tmp_path / "bin" / name
        path.parent.mkdir(exist_ok=True)
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)
    return _make


@pytest.fixture
def restore_config():
    """Snapshot the configuration singleton and put it back after the test."""
    snapshot = copy.deepcopy(config_class.__dict__)
    yield config_class
    config_class.__dict__.clear()
    config_class.__dict__.update(snapshot)
