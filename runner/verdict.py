from dataclasses import dataclass

from dispatcher.constant import (
    OOM_KILL_EXIT_CODE,
    SEGFAULT_EXIT_CODE,
    Verdict,
)

WRONG_ANSWER_MESSAGE = "output does not match"


@dataclass
class ExecutionOutcome:
    verdict: Verdict
    actual_output: str = ""
    diagnostic: str = ""

    @property
    def accepted(self) -> bool:
        return self.verdict == Verdict.ACCEPTED


def normalize_output(s: str) -> str:
    # line endings first, otherwise a trailing '\r' survives the trim
    return s.replace("\r\n", "\n").strip()


def classify(
    exit_code: int,
    timed_out: bool,
    memory_limit_configured: bool,
    actual_output: str,
    expected_output: str,
    stderr: str = "",
    time_limit_ms: int | None = None,
) -> ExecutionOutcome:
    actual_output = normalize_output(actual_output)
    stderr = stderr.strip()
    if timed_out:
        limit = f" (> {time_limit_ms}ms)" if time_limit_ms else ""
        return ExecutionOutcome(
            Verdict.TIME_LIMIT,
            actual_output,
            f"Time Limit Exceeded{limit}",
        )
    if exit_code == OOM_KILL_EXIT_CODE and memory_limit_configured:
        return ExecutionOutcome(
            Verdict.MEMORY_LIMIT,
            actual_output,
            f"Memory Limit Exceeded (exit code {exit_code})",
        )
    if exit_code == SEGFAULT_EXIT_CODE:
        diagnostic = f"Segmentation fault (SIGSEGV, exit code {exit_code})"
        if stderr:
            diagnostic += f"\nStderr:\n{stderr}"
        return ExecutionOutcome(Verdict.RUNTIME_ERROR, actual_output,
                                diagnostic)
    if exit_code != 0:
        diagnostic = f"Container exited with non-zero status code {exit_code}."
        if stderr:
            diagnostic += f"\nStderr:\n{stderr}"
        return ExecutionOutcome(Verdict.RUNTIME_ERROR, actual_output,
                                diagnostic)
    if actual_output != normalize_output(expected_output):
        return ExecutionOutcome(
            Verdict.WRONG_ANSWER,
            actual_output,
            WRONG_ANSWER_MESSAGE,
        )
    return ExecutionOutcome(Verdict.ACCEPTED, actual_output)
