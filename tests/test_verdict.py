import pytest

from dispatcher.constant import Verdict
from runner.verdict import WRONG_ANSWER_MESSAGE, classify, normalize_output


@pytest.mark.parametrize('raw', ['3\n', '3', '3\r\n', '  3  \n\n'])
def test_normalize_output(raw):
    assert normalize_output(raw) == '3'


def test_normalize_keeps_inner_lines():
    assert normalize_output('1\r\n2\r\n') == '1\n2'


def test_timeout_wins_over_exit_code():
    outcome = classify(
        exit_code=0,
        timed_out=True,
        memory_limit_configured=True,
        actual_output='partial',
        expected_output='partial',
        time_limit_ms=500,
    )
    assert outcome.verdict == Verdict.TIME_LIMIT
    assert '500ms' in outcome.diagnostic


def test_oom_with_limit_is_memory_limit():
    outcome = classify(137, False, True, '', '1')
    assert outcome.verdict == Verdict.MEMORY_LIMIT


def test_oom_without_limit_is_runtime_error():
    outcome = classify(137, False, False, '', '1')
    assert outcome.verdict == Verdict.RUNTIME_ERROR
    assert '137' in outcome.diagnostic


def test_segfault_names_signal():
    outcome = classify(139, False, True, '', '1', stderr='boom')
    assert outcome.verdict == Verdict.RUNTIME_ERROR
    assert 'SIGSEGV' in outcome.diagnostic
    assert 'boom' in outcome.diagnostic


def test_non_zero_exit_includes_stderr():
    outcome = classify(2, False, True, '', '1', stderr='panic: oops\n')
    assert outcome.verdict == Verdict.RUNTIME_ERROR
    assert 'status code 2' in outcome.diagnostic
    assert 'panic: oops' in outcome.diagnostic


def test_wrong_answer():
    outcome = classify(0, False, True, '300\n', '3')
    assert outcome.verdict == Verdict.WRONG_ANSWER
    assert outcome.actual_output == '300'
    assert outcome.diagnostic == WRONG_ANSWER_MESSAGE
    assert not outcome.accepted


def test_accepted_after_normalization():
    outcome = classify(0, False, True, '3\r\n', '3\n')
    assert outcome.verdict == Verdict.ACCEPTED
    assert outcome.accepted
