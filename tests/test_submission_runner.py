import shutil

import pytest

from dispatcher.constant import Verdict
from dispatcher.meta import Submission
from runner import submission as submission_module
from runner.compiler import EXECUTABLE_NAME, CompileResult
from runner.path_utils import PathTranslator
from runner.sandbox import JudgeError
from runner.submission import SubmissionRunner
from tests.fake_runtime import FakeRuntime, Script

ADD_PROGRAM = '''package main

import "fmt"

func main() {
    var a, b int
    fmt.Scan(&a, &b)
    fmt.Println(a + b)
}
'''


def make_submission(cases, **kwargs):
    payload = {
        'submissionId': 'sub-1',
        'sourceCode': ADD_PROGRAM,
        'testCases': cases,
        'timeLimit': '500ms',
        'memoryLimit': '64',
        'cpuCount': '1.0',
    }
    payload.update(kwargs)
    return Submission.model_validate(payload)


@pytest.fixture
def fake_compile(monkeypatch):
    calls = []

    def compile_program(source_path, output_dir, timeout=None):
        calls.append(source_path)
        executable = output_dir / EXECUTABLE_NAME
        executable.write_bytes(b'\x7fELF')
        return CompileResult(ok=True, executable=executable, log='')

    monkeypatch.setattr(submission_module, 'compile_program', compile_program)
    return calls


@pytest.fixture
def make_runner(tmp_path):

    def make(runtime):
        return SubmissionRunner(
            runtime=runtime,
            translator=PathTranslator(sandbox_root=tmp_path,
                                      host_root='/host'),
            root_dir=tmp_path / 'submissions',
        )

    return make


def workspaces(tmp_path):
    root = tmp_path / 'submissions'
    return list(root.iterdir()) if root.exists() else []


def test_accepted(tmp_path, fake_compile, make_runner):
    runtime = FakeRuntime([Script(stdout='3\n')])
    verdict, log = make_runner(runtime).judge(
        make_submission([{
            'input': '1 2',
            'expectedOutput': '3'
        }]))
    assert verdict == Verdict.ACCEPTED
    assert 'Overall Result: Accepted' in log
    assert '--- Running Test Case 1 / 1 ---' in log
    assert runtime.live == set()
    assert workspaces(tmp_path) == []


def test_bind_source_is_translated_to_host_path(tmp_path, fake_compile,
                                                make_runner):
    runtime = FakeRuntime([Script(stdout='3')])
    make_runner(runtime).judge(
        make_submission([{
            'input': '1 2',
            'expectedOutput': '3'
        }]))
    host_path = runtime.specs[0].executable_host_path
    assert host_path.startswith('/host/submissions/sub-1-')
    assert host_path.endswith(EXECUTABLE_NAME)


def test_wrong_answer_reports_actual_output(tmp_path, fake_compile,
                                            make_runner):
    runtime = FakeRuntime([Script(stdout='300\n')])
    verdict, log = make_runner(runtime).judge(
        make_submission([{
            'input': '1 2',
            'expectedOutput': '3'
        }]))
    assert verdict == Verdict.WRONG_ANSWER
    assert 'Actual Output:\n300' in log
    assert runtime.live == set()


def test_fail_fast_runs_exactly_k_cases(tmp_path, fake_compile, make_runner):
    runtime = FakeRuntime([
        Script(stdout='1'),
        Script(stdout='wrong'),
        Script(stdout='3'),
        Script(stdout='4'),
    ])
    cases = [{'input': str(i), 'expectedOutput': str(i)} for i in range(1, 5)]
    verdict, log = make_runner(runtime).judge(make_submission(cases))
    assert verdict == Verdict.WRONG_ANSWER
    assert len(runtime.created) == 2
    assert runtime.removed == runtime.created
    assert 'Running Test Case 3' not in log


def test_time_limit(tmp_path, fake_compile, make_runner):
    runtime = FakeRuntime([Script(timeout=True)])
    verdict, _ = make_runner(runtime).judge(
        make_submission([{
            'input': '',
            'expectedOutput': '1'
        }]))
    assert verdict == Verdict.TIME_LIMIT
    assert runtime.live == set()


def test_memory_limit(tmp_path, fake_compile, make_runner):
    runtime = FakeRuntime([Script(exit_code=137)])
    verdict, _ = make_runner(runtime).judge(
        make_submission([{
            'input': '',
            'expectedOutput': '1'
        }]))
    assert verdict == Verdict.MEMORY_LIMIT


def test_no_test_cases_is_accepted(tmp_path, fake_compile, make_runner,
                                   fake_runtime):
    verdict, log = make_runner(fake_runtime).judge(make_submission([]))
    assert verdict == Verdict.ACCEPTED
    assert "No test cases to run." in log
    assert fake_runtime.created == []


def test_compile_error_creates_no_container(tmp_path, monkeypatch,
                                            make_runner):
    monkeypatch.setattr(
        submission_module,
        'compile_program',
        lambda source, out, timeout=None: CompileResult(
            ok=False,
            executable=None,
            log='./main.go:3:1: syntax error',
        ),
    )
    runtime = FakeRuntime()
    verdict, log = make_runner(runtime).judge(
        make_submission([{
            'input': '',
            'expectedOutput': ''
        }]))
    assert verdict == Verdict.COMPILE_ERROR
    assert 'syntax error' in log
    assert runtime.created == []
    assert workspaces(tmp_path) == []


def test_image_build_failure_is_compile_error(tmp_path, fake_compile,
                                              make_runner):
    runtime = FakeRuntime(image_present=False, build_error='no space left')
    verdict, log = make_runner(runtime).judge(
        make_submission([{
            'input': '',
            'expectedOutput': ''
        }]))
    assert verdict == Verdict.COMPILE_ERROR
    assert 'Error building Docker image: no space left' in log
    assert fake_compile == []


def test_missing_image_is_built_first(tmp_path, fake_compile, make_runner):
    runtime = FakeRuntime([Script(stdout='3')], image_present=False)
    verdict, _ = make_runner(runtime).judge(
        make_submission([{
            'input': '',
            'expectedOutput': '3'
        }]))
    assert verdict == Verdict.ACCEPTED
    assert runtime.built == ['go-judge-runner:latest']


def test_unreachable_runtime_raises_judge_error(tmp_path, fake_compile,
                                                make_runner):
    runtime = FakeRuntime(unavailable=True)
    with pytest.raises(JudgeError):
        make_runner(runtime).judge(make_submission([]))
    assert workspaces(tmp_path) == []


def test_workspace_removed_when_sandbox_blows_up(tmp_path, fake_compile,
                                                 make_runner, monkeypatch):

    def explode(self, test_case):
        raise OSError('disk gone')

    monkeypatch.setattr(submission_module.Sandbox, 'run', explode)
    with pytest.raises(JudgeError):
        make_runner(FakeRuntime()).judge(
            make_submission([{
                'input': '',
                'expectedOutput': ''
            }]))
    assert workspaces(tmp_path) == []


@pytest.mark.skipif(shutil.which('go') is None, reason='go not installed')
def test_real_compiler_produces_executable(tmp_path):
    from runner.compiler import compile_program
    source = tmp_path / 'main.go'
    source.write_text(ADD_PROGRAM)
    result = compile_program(source, tmp_path)
    assert result.ok
    assert result.executable.exists()
