import requests as rq

from .utils import (
    logger, )
from .config import (
    INTERNAL_API_KEY,
    REPORT_RETRIES,
    REPORT_TIMEOUT,
    RESULT_SINK_URL,
)


def report_url(submission_id: str) -> str:
    return RESULT_SINK_URL.format(submission_id=submission_id)


def report_result(payload: dict) -> bool:
    """
    POST a verdict to the result sink. Returns whether the sink accepted it.
    Failures are logged and retried a bounded number of times, never raised.
    """
    submission_id = payload["submissionId"]
    url = report_url(submission_id)
    for attempt in range(1, REPORT_RETRIES + 1):
        logger().info(
            f"send result to sink [submission_id={submission_id}, attempt={attempt}]"
        )
        try:
            resp = rq.post(
                url,
                json=payload,
                headers={"X-API-Key": INTERNAL_API_KEY},
                timeout=REPORT_TIMEOUT,
            )
        except rq.RequestException as exc:
            logger().warning(
                "send result to sink failed [submission_id=%s]: %s",
                submission_id,
                exc,
            )
            continue
        logger().debug(f"get sink response: [{resp.status_code}] {resp.text}")
        if resp.ok:
            return True
        # client errors will not get better on retry
        if 400 <= resp.status_code < 500:
            logger().error(
                "result sink rejected result [submission_id=%s, status=%s, resp=%s]",
                submission_id,
                resp.status_code,
                resp.text,
            )
            return False
        logger().warning(
            "result sink error [submission_id=%s, status=%s]",
            submission_id,
            resp.status_code,
        )
    logger().error(f"give up reporting result [submission_id={submission_id}]")
    return False
