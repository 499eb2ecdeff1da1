"""Utility for manually judging a local source file.

Runs the full judging flow of a worker (image check, host compilation,
one sandbox container per test case) without any HTTP layer, and prints
the judge transcript followed by the overall verdict.

Example::

    python tools/manual_runner.py \
        --source main.go \
        --testcases testcases.json \
        --time-limit 500ms \
        --mem-limit 64

The test case file is a JSON list of ``{"input": ..., "expectedOutput": ...}``
objects. Use ``--json`` to print the worker style result instead.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from pydantic import ValidationError

from dispatcher import config
from dispatcher.meta import Submission
from dispatcher.result_factory import make_run_result
from runner.runtime import RuntimeUnavailable
from runner.sandbox import JudgeError
from runner.submission import SubmissionRunner


def load_testcases(path: Path) -> List[Dict[str, Any]]:
    """Return the test cases stored in `path`."""

    text = path.read_text()
    if not text.strip():
        print(f"Warning: Test cases file '{path}' is empty.", file=sys.stderr)
        return []
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError(f"test cases file must hold a JSON list: {path}")
    return data


def parse_args(argv=None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--source",
        required=True,
        type=Path,
        help="source file to compile",
    )
    parser.add_argument(
        "--testcases",
        required=True,
        type=Path,
        help="JSON file with the test cases",
    )
    parser.add_argument(
        "--id",
        default="manual",
        help="submission id used for labels and the workspace name",
    )
    parser.add_argument(
        "--time-limit",
        default="",
        help="time limit per test case, e.g. 500ms or 2s",
    )
    parser.add_argument(
        "--mem-limit",
        default="",
        help="memory limit per test case in MB (0 for unlimited)",
    )
    parser.add_argument(
        "--cpus",
        default="",
        help="CPU cores per test case",
    )
    parser.add_argument(
        "--image",
        default=config.DEFAULT_DOCKER_IMAGE,
        help="execution image, built when missing",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="print the worker result as JSON",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="print debug logs to stderr",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """CLI entry point."""

    args = parse_args(argv)
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.verbose else logging.WARNING,
    )
    try:
        submission = Submission.model_validate({
            "submissionId": args.id,
            "sourceCode": args.source.read_text(),
            "testCases": load_testcases(args.testcases),
            "timeLimit": args.time_limit,
            "memoryLimit": args.mem_limit,
            "cpuCount": args.cpus,
            "dockerImage": args.image,
        })
    except (OSError, ValueError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        verdict, output = SubmissionRunner().judge(submission)
    except (JudgeError, RuntimeUnavailable) as e:
        print(f"Judge infrastructure error: {e}", file=sys.stderr)
        return 1

    if args.json:
        result = make_run_result(submission.id, verdict, output)
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        print(output, end="")
        print(f"Result: {verdict.value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
