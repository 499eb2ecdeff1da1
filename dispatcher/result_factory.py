"""
Factory functions for creating standardized result dictionaries.

This module provides consistent result structures for:
- Worker results (the body a worker's /run endpoint answers with)
- Report payloads (the body posted to the result sink)
"""

from .constant import Verdict


def make_run_result(
    submission_id: str,
    status: Verdict,
    output: str = "",
) -> dict:
    """
    Build a worker result.

    Args:
        submission_id: Submission the result belongs to
        status: Final verdict of the submission
        output: Judge log (compiler output, stderr snippet, ...)

    Returns:
        Worker result dictionary
    """
    return {
        "submissionId": submission_id,
        "status": Verdict(status).value,
        "output": output,
    }


def make_infra_failure_result(submission_id: str, message: str) -> dict:
    """
    Build a RuntimeError result for a failure outside the judged program,
    e.g. an unreachable container runtime or worker.
    """
    return make_run_result(
        submission_id=submission_id,
        status=Verdict.RUNTIME_ERROR,
        output=f"Judge infrastructure error: {message}",
    )


def make_report(submission_id: str, result: dict) -> dict:
    """
    Build the result sink payload from a worker result. Unknown statuses are
    reported as RuntimeError so the sink only ever sees a valid verdict.
    """
    try:
        status = Verdict(result.get("status"))
    except ValueError:
        status = Verdict.RUNTIME_ERROR
    return {
        "submissionId": submission_id,
        "status": status.value,
        "output": str(result.get("output") or ""),
    }
