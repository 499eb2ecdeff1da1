import pytest

from dispatcher import config
from tests.fake_runtime import FakeRuntime


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path, monkeypatch):
    # keep workspaces and the worker state file out of the repository
    monkeypatch.setattr(config, 'SUBMISSION_DIR', tmp_path / 'submissions')
    monkeypatch.setattr(config, 'WORKER_STATE_FILE',
                        tmp_path / '.config' / 'workers.json')
    monkeypatch.delenv('SANDBOX_ROOT', raising=False)
    monkeypatch.delenv('HOST_ROOT', raising=False)


@pytest.fixture
def fake_runtime():
    return FakeRuntime()
