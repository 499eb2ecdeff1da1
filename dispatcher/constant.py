from enum import Enum


class Verdict(str, Enum):
    ACCEPTED = 'Accepted'
    COMPILE_ERROR = 'CompileError'
    WRONG_ANSWER = 'WrongAnswer'
    TIME_LIMIT = 'TimeLimit'
    MEMORY_LIMIT = 'MemoryLimit'
    RUNTIME_ERROR = 'RuntimeError'


class WorkerState(str, Enum):
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPED = 'stopped'


# exit codes reported by the container runtime
OOM_KILL_EXIT_CODE = 137
SEGFAULT_EXIT_CODE = 139
