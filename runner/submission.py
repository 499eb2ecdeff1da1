import io
from pathlib import Path
from typing import Dict, Optional, Tuple

from dispatcher import config, file_manager
from dispatcher.constant import Verdict
from dispatcher.meta import Submission
from dispatcher.utils import logger
from .compiler import compile_program
from .image import ensure_image
from .path_utils import PathTranslator
from .runtime import DockerRuntime, RuntimeUnavailable, SandboxRuntime
from .sandbox import JudgeError, Sandbox


class JudgeLog:
    """Judge transcript, kept in memory and mirrored to the logger."""

    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        self._buf = io.StringIO()

    def write(self, text: str = ""):
        logger().info(f"[{self.submission_id}] {text.strip()}")
        self._buf.write(text + "\n")

    def getvalue(self) -> str:
        return self._buf.getvalue()


class SubmissionRunner:

    def __init__(
        self,
        runtime: Optional[SandboxRuntime] = None,
        translator: Optional[PathTranslator] = None,
        root_dir: Optional[Path] = None,
        labels: Optional[Dict[str, str]] = None,
    ):
        self.runtime = runtime or DockerRuntime()
        self.translator = translator or PathTranslator()
        # workspace parent, defaults to SUBMISSION_DIR
        self.root_dir = root_dir
        # extra container labels, e.g. the owning worker
        self.labels = dict(labels or {})

    def judge(self, submission: Submission) -> Tuple[Verdict, str]:
        """
        Compile the submission and run it against every test case in order,
        stopping at the first one that is not accepted.

        Returns the overall verdict and the judge transcript. Problems with
        the submission itself always end up in the verdict; :class:`JudgeError`
        is raised only when the judging infrastructure is broken.
        """
        log = JudgeLog(submission.id)
        log.write("Initialized judge configuration")
        log.write(f"Loaded {len(submission.testCases)} test cases.")
        if not submission.testCases:
            log.write("Warning: No test cases provided.")
        try:
            self.runtime.ping()
            log.write(f"Preparing Docker image '{submission.dockerImage}'...")
            ok, message = ensure_image(self.runtime, submission.dockerImage)
        except RuntimeUnavailable as exc:
            logger().error(
                f"container runtime unavailable [submission_id={submission.id}]: {exc}"
            )
            raise JudgeError(str(exc)) from exc
        log.write(message)
        if not ok:
            log.write(f"Result: {Verdict.COMPILE_ERROR.value}")
            return Verdict.COMPILE_ERROR, log.getvalue()
        try:
            with file_manager.workspace(submission.id,
                                        self.root_dir) as workdir:
                return self._judge_in(workdir, submission, log)
        except OSError as exc:
            logger().error(
                f"workspace failure [submission_id={submission.id}]: {exc}")
            raise JudgeError(f"workspace failure: {exc}") from exc

    def _judge_in(
        self,
        workdir: Path,
        submission: Submission,
        log: JudgeLog,
    ) -> Tuple[Verdict, str]:
        source_path = file_manager.write_source(workdir, submission.sourceCode)
        compiled = compile_program(source_path, workdir)
        if not compiled.ok:
            log.write(f"Compilation Log:\n{compiled.log}")
            log.write(f"Result: {Verdict.COMPILE_ERROR.value}")
            return Verdict.COMPILE_ERROR, log.getvalue()
        log.write(
            f"Compilation successful. Host Executable: {compiled.executable}")
        if submission.memoryLimit > 0:
            log.write(
                f"Memory Limit per Test Case: {submission.memoryLimit} MB")
        if submission.cpuCount > 0:
            log.write(
                f"CPU Limit per Test Case: {submission.cpuCount:.2f} cores")
        log.write(f"Time Limit per Test Case: {submission.timeLimit}ms")

        executable = self.translator.to_host(compiled.executable)
        overall = Verdict.ACCEPTED
        total = len(submission.testCases)
        if total == 0:
            log.write("No test cases to run.")
        for i, test_case in enumerate(submission.testCases, 1):
            log.write(f"\n--- Running Test Case {i} / {total} ---")
            log.write(f"Input:\n{test_case.input}")
            outcome = Sandbox(
                runtime=self.runtime,
                image=submission.dockerImage,
                executable_host_path=str(executable),
                time_limit=submission.timeLimit,
                mem_limit=submission.memoryLimit,
                cpu_count=submission.cpuCount,
                labels={
                    config.CONTAINER_LABEL: submission.id,
                    **self.labels,
                },
            ).run(test_case)
            log.write(f"Expected Output:\n{test_case.expectedOutput}")
            log.write(f"Actual Output:\n{outcome.actual_output}")
            if outcome.diagnostic:
                log.write(f"Error Details:\n{outcome.diagnostic}")
            log.write(f"Test Case {i} Result: {outcome.verdict.value}")
            if not outcome.accepted:
                overall = outcome.verdict
                break
        log.write("\n--- Judge Finished ---")
        log.write(f"Overall Result: {overall.value}")
        return overall, log.getvalue()
