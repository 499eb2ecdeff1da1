from pathlib import Path

from runner.path_utils import PathTranslator


def test_translates_paths_under_sandbox_root(tmp_path):
    t = PathTranslator(sandbox_root=tmp_path, host_root="/srv/judge")
    exe = tmp_path / "submissions" / "sub-1" / "program_to_run"
    assert t.to_host(exe) == Path("/srv/judge/submissions/sub-1/program_to_run")


def test_relative_paths_are_anchored_at_sandbox_root(tmp_path):
    t = PathTranslator(sandbox_root=tmp_path, host_root="/srv/judge")
    assert t.to_host("submissions/x") == Path("/srv/judge/submissions/x")


def test_paths_outside_sandbox_root_are_unchanged(tmp_path):
    t = PathTranslator(sandbox_root=tmp_path / "a", host_root="/srv/judge")
    other = tmp_path / "b" / "exe"
    assert t.to_host(other) == other


def test_same_roots_mean_identity(tmp_path):
    t = PathTranslator(sandbox_root=tmp_path, host_root=tmp_path)
    exe = tmp_path / "exe"
    assert t.to_host(exe) == exe


def test_defaults_come_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SANDBOX_ROOT", str(tmp_path))
    monkeypatch.setenv("HOST_ROOT", "/srv/judge")
    t = PathTranslator()
    assert t.to_host(tmp_path / "x") == Path("/srv/judge/x")
