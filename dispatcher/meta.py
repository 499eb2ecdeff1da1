import re
from typing import List, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from . import config

_DURATION_UNITS_MS = {
    'ns': 1e-6,
    'us': 1e-3,
    'µs': 1e-3,
    'ms': 1.0,
    's': 1000.0,
    'm': 60 * 1000.0,
    'h': 60 * 60 * 1000.0,
}
_DURATION_PART = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)')


def parse_duration_ms(value: Union[str, int, float, None]) -> int:
    """
    Convert a Go style duration string ("500ms", "2s", "1m30s") into
    milliseconds. Bare numbers are taken as milliseconds already.
    """
    if value is None:
        return config.DEFAULT_TIME_LIMIT_MS
    if isinstance(value, bool):
        raise ValueError('time limit must be a duration')
    if isinstance(value, (int, float)):
        return int(value)
    text = value.strip()
    if text == '':
        return config.DEFAULT_TIME_LIMIT_MS
    try:
        return int(float(text))
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS_MS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f'invalid duration: {value!r}')
    return int(total)


class TestCase(BaseModel):
    __test__ = False
    model_config = ConfigDict(frozen=True)

    input: str = ''
    expectedOutput: str = ''


class Submission(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias='submissionId')
    sourceCode: str
    testCases: List[TestCase] = Field(default_factory=list)
    # ms
    timeLimit: int = config.DEFAULT_TIME_LIMIT_MS
    # MB, 0 means unlimited
    memoryLimit: int = config.DEFAULT_MEMORY_LIMIT_MB
    # fractional cores
    cpuCount: float = config.DEFAULT_CPU_COUNT
    dockerImage: str = config.DEFAULT_DOCKER_IMAGE

    @field_validator('id', mode='before')
    @classmethod
    def _coerce_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str) or not v.strip():
            raise ValueError('missing submission id')
        return v.strip()

    @field_validator('testCases', mode='before')
    @classmethod
    def _coerce_test_cases(cls, v):
        return [] if v is None else v

    @field_validator('timeLimit', mode='before')
    @classmethod
    def _parse_time_limit(cls, v):
        ms = parse_duration_ms(v)
        if ms <= 0:
            raise ValueError('time limit must be positive')
        return ms

    @field_validator('memoryLimit', mode='before')
    @classmethod
    def _parse_memory_limit(cls, v):
        if v is None or (isinstance(v, str) and v.strip() == ''):
            return config.DEFAULT_MEMORY_LIMIT_MB
        if isinstance(v, str):
            v = int(v.strip())
        if v < 0:
            raise ValueError('memory limit must not be negative')
        return v

    @field_validator('cpuCount', mode='before')
    @classmethod
    def _parse_cpu_count(cls, v):
        if v is None or (isinstance(v, str) and v.strip() == ''):
            return config.DEFAULT_CPU_COUNT
        v = float(v)
        if v < 0:
            raise ValueError('cpu count must not be negative')
        return v

    @field_validator('dockerImage', mode='before')
    @classmethod
    def _default_image(cls, v):
        if v is None or (isinstance(v, str) and v.strip() == ''):
            return config.DEFAULT_DOCKER_IMAGE
        return v

    def to_payload(self) -> dict:
        """Wire form sent to a worker's /run endpoint."""
        return self.model_dump(by_alias=True)
