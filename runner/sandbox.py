"""
One sandboxed execution of a compiled program against one test case.

Lifecycle: CREATED -> ATTACHED -> STARTED -> EXITED | TIMED_OUT, with
START_FAILED reachable from CREATED / ATTACHED. Whatever the terminal state,
the container is stopped and force-removed before :meth:`Sandbox.run`
returns.
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from dispatcher import config
from dispatcher.constant import Verdict
from dispatcher.meta import TestCase
from dispatcher.utils import logger
from .runtime import STDERR, ContainerSpec, SandboxRuntime, SandboxTimeout
from .verdict import ExecutionOutcome, classify, normalize_output


class JudgeError(Exception):
    """Infrastructure failure, as opposed to a problem with the submission."""


class SandboxState(str, Enum):
    CREATED = "created"
    ATTACHED = "attached"
    STARTED = "started"
    EXITED = "exited"
    TIMED_OUT = "timed_out"
    START_FAILED = "start_failed"


@dataclass
class Result:
    Status: SandboxState
    Duration: float  # ms
    Stdout: str
    Stderr: str
    DockerError: str
    DockerExitCode: int


class Sandbox:

    def __init__(
        self,
        runtime: SandboxRuntime,
        image: str,
        executable_host_path: str,
        time_limit: int,  # ms
        mem_limit: int,  # MB, 0 = unlimited
        cpu_count: float = 0.0,
        labels: Optional[Dict[str, str]] = None,
    ):
        self.runtime = runtime
        self.image = image
        self.executable_host_path = executable_host_path
        self.time_limit = time_limit
        self.mem_limit = mem_limit
        self.cpu_count = cpu_count
        self.labels = dict(labels or {})
        self.container_id: Optional[str] = None
        self.states: List[SandboxState] = []

    @property
    def state(self) -> Optional[SandboxState]:
        return self.states[-1] if self.states else None

    def _transition(self, state: SandboxState):
        logger().debug(
            f"sandbox state [container={(self.container_id or '')[:12]}, state={state.value}]"
        )
        self.states.append(state)

    def _spec(self) -> ContainerSpec:
        return ContainerSpec(
            image=self.image,
            command=[config.CONTAINER_EXECUTABLE_PATH],
            executable_host_path=self.executable_host_path,
            executable_container_path=config.CONTAINER_EXECUTABLE_PATH,
            user=config.SANDBOX_USER,
            working_dir="/app",
            memory_limit_mb=self.mem_limit,
            cpu_count=self.cpu_count,
            labels=self.labels,
        )

    def run(self, test_case: TestCase) -> ExecutionOutcome:
        result = self.execute(test_case.input)
        if result.Duration >= 0:
            logger().info(
                f"Test case finished in {result.Duration:.0f}ms [state={result.Status.value}]"
            )
        if result.DockerError:
            return ExecutionOutcome(
                Verdict.RUNTIME_ERROR,
                normalize_output(result.Stdout),
                result.DockerError,
            )
        return classify(
            exit_code=result.DockerExitCode,
            timed_out=result.Status == SandboxState.TIMED_OUT,
            memory_limit_configured=self.mem_limit > 0,
            actual_output=result.Stdout,
            expected_output=test_case.expectedOutput,
            stderr=result.Stderr,
            time_limit_ms=self.time_limit,
        )

    def execute(self, stdin: str) -> Result:
        try:
            self.container_id = self.runtime.create(self._spec())
        except Exception as exc:
            logger().error(f"Failed to create container: {exc}")
            return self._start_failed(f"Failed to create container: {exc}")
        cid = self.container_id
        logger().info(f"Container created: {cid[:12]}")
        self._transition(SandboxState.CREATED)
        stream = None
        executor = ThreadPoolExecutor(
            max_workers=3,
            thread_name_prefix=f"sandbox-{cid[:12]}",
        )
        try:
            try:
                stream = self.runtime.attach(cid)
            except Exception as exc:
                return self._start_failed(
                    f"Failed to attach to container {cid[:12]}: {exc}")
            self._transition(SandboxState.ATTACHED)
            try:
                self.runtime.start(cid)
            except Exception as exc:
                return self._start_failed(
                    f"Failed to start container {cid[:12]}: {exc}")
            self._transition(SandboxState.STARTED)
            return self._execute(executor, stream, stdin)
        finally:
            self._teardown(cid, stream, executor)

    def _execute(self, executor: ThreadPoolExecutor, stream,
                 stdin: str) -> Result:
        cid = self.container_id
        stdout = bytearray()
        stderr = bytearray()
        budget = self.time_limit / 1000 + config.START_GRACE
        started_at = time.monotonic()
        writer = executor.submit(_write_stdin, stream, stdin)
        reader = executor.submit(_read_output, stream, stdout, stderr)
        waiter = executor.submit(self.runtime.wait, cid, budget)

        exit_code = -1
        docker_error = ""
        timed_out = False
        try:
            exit_code = waiter.result(timeout=budget +
                                      config.STREAM_DRAIN_TIMEOUT)
        except (SandboxTimeout, FutureTimeout):
            timed_out = True
        except Exception as exc:
            docker_error = f"Error waiting for container {cid[:12]}: {exc}"
            logger().error(docker_error)
        duration = (time.monotonic() - started_at) * 1000

        if timed_out:
            self._transition(SandboxState.TIMED_OUT)
            logger().info(
                f"Context timed out ({self.time_limit}ms) while waiting for container {cid[:12]}"
            )
            try:
                self.runtime.stop(cid, config.TLE_STOP_GRACE)
            except Exception as exc:
                logger().warning(
                    f"Failed to stop container {cid[:12]} after timeout: {exc}"
                )
        else:
            self._transition(SandboxState.EXITED)
            logger().info(
                f"Container {cid[:12]} exited with status code: {exit_code}")

        # output is final only once both stream tasks are done
        _join(reader, "output stream copy", cid)
        _join(writer, "input writing", cid)
        return Result(
            Status=self.state,
            Duration=duration,
            Stdout=bytes(stdout).decode("utf-8", "replace"),
            Stderr=bytes(stderr).decode("utf-8", "replace"),
            DockerError=docker_error,
            DockerExitCode=exit_code,
        )

    def _start_failed(self, message: str) -> Result:
        self._transition(SandboxState.START_FAILED)
        return Result(
            Status=SandboxState.START_FAILED,
            Duration=-1,
            Stdout="",
            Stderr="",
            DockerError=message,
            DockerExitCode=-1,
        )

    def _teardown(self, cid: str, stream, executor: ThreadPoolExecutor):
        try:
            self.runtime.stop(cid, config.STOP_GRACE)
        except Exception as exc:
            logger().warning(
                f"Failed to stop container {cid[:12]} before removing: {exc}")
        try:
            self.runtime.remove(cid)
            logger().info(f"Container {cid[:12]} removed.")
        except Exception as exc:
            logger().error(f"Failed to remove container {cid[:12]}: {exc}")
        if stream is not None:
            try:
                stream.close()
            except OSError as exc:
                logger().debug(f"close attach stream failed: {exc}")
        executor.shutdown(wait=False)


def _write_stdin(stream, data: str):
    if not data.endswith("\n"):
        data += "\n"
    try:
        stream.write_stdin(data.encode())
    except OSError as exc:
        # the program may exit without reading all of its input
        logger().debug(f"write stdin interrupted: {exc}")
    finally:
        try:
            stream.close_stdin()
        except OSError as exc:
            logger().debug(f"close stdin failed: {exc}")


def _read_output(stream, stdout: bytearray, stderr: bytearray):
    for kind, chunk in stream.frames():
        if kind == STDERR:
            stderr.extend(chunk)
        else:
            stdout.extend(chunk)


def _join(future: Future, name: str, cid: str):
    try:
        future.result(timeout=config.STREAM_DRAIN_TIMEOUT)
    except FutureTimeout:
        logger().warning(
            f"Timed out waiting for {name} to finish for container {cid[:12]}")
    except Exception as exc:
        logger().warning(f"Error in {name} for container {cid[:12]}: {exc}")
