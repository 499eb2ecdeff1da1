"""
Judge worker process.

Each worker is a single-threaded HTTP server judging one submission at a
time. It is launched by the worker manager as::

    python -m runner.server --port 8081
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError

from dispatcher import config
from dispatcher.meta import Submission
from dispatcher.result_factory import make_infra_failure_result, make_run_result
from dispatcher.utils import logger
from .runtime import DockerRuntime, RuntimeUnavailable
from .sandbox import JudgeError
from .submission import SubmissionRunner

app = Flask(__name__)
RUNNER: Optional[SubmissionRunner] = None


def get_runner() -> SubmissionRunner:
    global RUNNER
    if RUNNER is None:
        RUNNER = SubmissionRunner()
    return RUNNER


@app.post("/run")
def run():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({
            "status": "err",
            "msg": "payload must be a json object",
            "data": None,
        }), 400
    try:
        submission = Submission.model_validate(payload)
    except ValidationError as e:
        logger().debug(f"reject invalid payload: {e}")
        return jsonify({
            "status": "err",
            "msg": str(e),
            "data": None,
        }), 400
    logger().info(f"start judging [submission_id={submission.id}]")
    try:
        verdict, output = get_runner().judge(submission)
    except (JudgeError, RuntimeUnavailable) as e:
        logger().error(f"judge failed [submission_id={submission.id}]: {e}")
        return jsonify(make_infra_failure_result(submission.id, str(e)))
    except Exception as e:
        logger().error(
            f"unexpected error while judging [submission_id={submission.id}]",
            exc_info=e,
        )
        return jsonify(make_infra_failure_result(submission.id, repr(e)))
    logger().info(
        f"finish judging [submission_id={submission.id}, verdict={verdict.value}]"
    )
    return jsonify(make_run_result(submission.id, verdict, output))


@app.get("/health")
def health():
    return jsonify({"status": "ok"})


def setup_logging():
    level = logging.INFO
    if os.getenv("NOJ_DEBUG", "").lower() == "true":
        level = logging.DEBUG
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(asctime)s [%(process)d] %(levelname)s %(message)s",
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--port", type=int, required=True)
    parser.add_argument("--host", default=config.WORKER_HOST)
    args = parser.parse_args(argv)
    setup_logging()

    global RUNNER
    try:
        runtime = DockerRuntime()
        runtime.ping()
    except RuntimeUnavailable as e:
        logger().error(f"worker cannot start [port={args.port}]: {e}")
        return 1
    # leftovers from a previous worker that died on this port
    removed = runtime.remove_labeled(config.WORKER_LABEL, str(args.port))
    if removed:
        logger().warning(
            f"removed stale containers [port={args.port}, count={removed}]")
    RUNNER = SubmissionRunner(
        runtime=runtime,
        labels={config.WORKER_LABEL: str(args.port)},
    )
    logger().info(f"worker ready [host={args.host}, port={args.port}]")
    try:
        app.run(host=args.host, port=args.port, threaded=False)
    except OSError as e:
        logger().error(f"worker cannot bind [port={args.port}]: {e}")
        return 1
    finally:
        runtime.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
