import pytest
from pydantic import ValidationError

from dispatcher import config
from dispatcher.meta import Submission, parse_duration_ms


@pytest.mark.parametrize('value, expected', [
    ('500ms', 500),
    ('2s', 2000),
    ('1.5s', 1500),
    ('1m30s', 90000),
    ('250', 250),
    (750, 750),
])
def test_parse_duration(value, expected):
    assert parse_duration_ms(value) == expected


@pytest.mark.parametrize('value', [None, '', '   '])
def test_empty_duration_uses_default(value):
    assert parse_duration_ms(value) == config.DEFAULT_TIME_LIMIT_MS


@pytest.mark.parametrize('value', ['fast', '5 s', 's', '1x'])
def test_invalid_duration(value):
    with pytest.raises(ValueError):
        parse_duration_ms(value)


def test_submission_wire_form():
    s = Submission.model_validate({
        'submissionId': 42,
        'sourceCode': 'package main',
        'testCases': [{
            'input': '1 2',
            'expectedOutput': '3'
        }],
        'timeLimit': '500ms',
        'memoryLimit': '128',
        'cpuCount': '0.5',
        'dockerImage': 'judge:test',
    })
    assert s.id == '42'
    assert s.timeLimit == 500
    assert s.memoryLimit == 128
    assert s.cpuCount == 0.5
    assert s.testCases[0].expectedOutput == '3'


def test_submission_defaults():
    s = Submission.model_validate({
        'submissionId': 'a',
        'sourceCode': '',
        'testCases': None,
        'timeLimit': '',
        'memoryLimit': '',
        'cpuCount': '',
        'dockerImage': '',
    })
    assert s.testCases == []
    assert s.timeLimit == config.DEFAULT_TIME_LIMIT_MS
    assert s.memoryLimit == config.DEFAULT_MEMORY_LIMIT_MB
    assert s.cpuCount == config.DEFAULT_CPU_COUNT
    assert s.dockerImage == config.DEFAULT_DOCKER_IMAGE


def test_zero_memory_means_unlimited():
    s = Submission.model_validate({
        'submissionId': 'a',
        'sourceCode': '',
        'memoryLimit': 0,
    })
    assert s.memoryLimit == 0


@pytest.mark.parametrize('field, value', [
    ('memoryLimit', -1),
    ('cpuCount', '-0.5'),
    ('timeLimit', '0ms'),
    ('submissionId', ''),
])
def test_rejects_bad_values(field, value):
    payload = {'submissionId': 'a', 'sourceCode': ''}
    payload[field] = value
    with pytest.raises(ValidationError):
        Submission.model_validate(payload)


def test_submission_is_immutable():
    s = Submission.model_validate({'submissionId': 'a', 'sourceCode': ''})
    with pytest.raises(ValidationError):
        s.sourceCode = 'changed'


def test_payload_round_trips_through_aliases():
    s = Submission.model_validate({'submissionId': 'a', 'sourceCode': 'x'})
    payload = s.to_payload()
    assert payload['submissionId'] == 'a'
    assert Submission.model_validate(payload) == s
