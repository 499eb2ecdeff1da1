import queue
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

import requests

from . import config, pipeline
from .constant import WorkerState
from .exception import DuplicatedSubmissionIdError
from .meta import Submission
from .result_factory import make_infra_failure_result, make_report
from .utils import logger
from .worker_manager import WorkerManager


def request_timeout(submission: Submission) -> float:
    """Upper bound for one /run call, derived from the submission limits."""
    per_case = (submission.timeLimit / 1000 + config.START_GRACE +
                2 * config.STREAM_DRAIN_TIMEOUT + config.STOP_GRACE +
                3 * config.DOCKER_API_TIMEOUT)
    return (config.WORKER_REQUEST_SLACK + config.DOCKER_BUILD_TIMEOUT +
            config.COMPILE_TIMEOUT + per_case * len(submission.testCases))


def send_to_worker(port: int, submission: Submission) -> dict:
    """
    Run `submission` on the worker listening on `port`. Any failure to get a
    well formed answer becomes a RuntimeError result.
    """
    url = f'http://{config.WORKER_HOST}:{port}/run'
    try:
        resp = requests.post(
            url,
            json=submission.to_payload(),
            timeout=(3, request_timeout(submission)),
        )
        resp.raise_for_status()
        result = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger().error(
            f'worker request failed [port={port}, submission_id={submission.id}]: {e}'
        )
        return make_infra_failure_result(
            submission.id,
            f'worker on port {port} failed: {e}',
        )
    if not isinstance(result, dict):
        return make_infra_failure_result(
            submission.id,
            f'worker on port {port} answered {result!r}',
        )
    return result


class Dispatcher(threading.Thread):
    """
    Hands submissions to idle workers, one submission per worker at a time.

    The busy-map (port -> submission id) is the only source of truth for
    whether a worker is free. Submissions that find no free worker wait in a
    bounded FIFO queue and are handed out as workers finish or come up.
    """

    def __init__(
        self,
        manager: WorkerManager,
        dispatcher_config=None,
        send: Callable[[int, Submission], dict] = send_to_worker,
        report: Callable[[dict], bool] = pipeline.report_result,
        interval: Optional[float] = None,
    ):
        super().__init__(name='dispatcher', daemon=True)
        limits = config.get_dispatcher_limits(dispatcher_config)
        self.MAX_TASK_COUNT = limits['queue_size']
        self.manager = manager
        self.send = send
        self.report = report
        self.interval = (config.RECONCILE_INTERVAL
                         if interval is None else interval)
        # guards queue and busy
        self.lock = threading.Lock()
        self.queue: Deque[Submission] = deque()
        self.busy: Dict[int, str] = {}
        self.do_run = True
        self._wakeup = threading.Event()
        manager.on_exit(self.on_worker_exit)

    def _contains(self, submission_id: str) -> bool:
        if submission_id in self.busy.values():
            return True
        return any(s.id == submission_id for s in self.queue)

    def _idle_ports(self) -> List[int]:
        return [
            w.port for w in self.manager.list()
            if w.state == WorkerState.RUNNING and w.port not in self.busy
        ]

    def _assign(self) -> List[Tuple[int, Submission]]:
        # caller holds self.lock
        assignments = []
        for port in self._idle_ports():
            if not self.queue:
                break
            submission = self.queue.popleft()
            self.busy[port] = submission.id
            assignments.append((port, submission))
        return assignments

    def _start_jobs(self, assignments: List[Tuple[int, Submission]]):
        for port, submission in assignments:
            logger().info(
                f'dispatch submission [id={submission.id}, port={port}]')
            threading.Thread(
                target=self._judge,
                args=(port, submission),
                name=f'judge-{submission.id}',
                daemon=True,
            ).start()

    def submit(self, submission: Submission):
        with self.lock:
            if self._contains(submission.id):
                raise DuplicatedSubmissionIdError(
                    f'duplicated submission id {submission.id}.')
            if (len(self.queue) >= self.MAX_TASK_COUNT
                    and not self._idle_ports()):
                raise queue.Full
            self.queue.append(submission)
            assignments = self._assign()
            queued = len(self.queue)
        if not assignments or assignments[-1][1] is not submission:
            logger().info(
                f'queue submission [id={submission.id}, queued={queued}]')
        self._start_jobs(assignments)

    def on_worker_done(self, port: int, submission_id: Optional[str] = None):
        """
        Release `port`. When `submission_id` is given the release only
        happens if that submission still owns the worker.
        """
        with self.lock:
            if (submission_id is not None
                    and self.busy.get(port) != submission_id):
                logger().debug(
                    f'ignore stale release [port={port}, id={submission_id}]')
                return
            self.busy.pop(port, None)
            assignments = self._assign()
        self._start_jobs(assignments)

    def on_worker_exit(self, port: int, pid: Optional[int] = None):
        """
        Forget the job on `port`. A notice about `pid` is ignored once the
        port belongs to a newer worker process.
        """
        with self.lock:
            worker = self.manager.get(port)
            if pid is not None and worker is not None and worker.pid != pid:
                logger().debug(
                    f'ignore stale exit [port={port}, pid={pid}, current={worker.pid}]'
                )
                return
            submission_id = self.busy.pop(port, None)
        if submission_id is not None:
            logger().warning(
                f'worker died while judging [port={port}, id={submission_id}]')

    def _judge(self, port: int, submission: Submission):
        try:
            result = self.send(port, submission)
        except Exception as e:
            logger().error(
                f'judge job failed [port={port}, id={submission.id}]: {e}',
                exc_info=True,
            )
            result = make_infra_failure_result(submission.id, repr(e))
        # free the worker before talking to the result sink
        self.on_worker_done(port, submission.id)
        payload = make_report(submission.id, result)
        logger().info(
            f'report result [id={submission.id}, status={payload["status"]}]')
        try:
            self.report(payload)
        except Exception as e:
            logger().error(f'report failed [id={submission.id}]: {e}',
                           exc_info=True)

    def reconcile(self):
        """
        Forget workers that are gone and hand queued submissions to workers
        that became available.
        """
        with self.lock:
            for port in list(self.busy):
                worker = self.manager.get(port)
                if worker is None or worker.state == WorkerState.STOPPED:
                    logger().warning(
                        f'drop dead worker [port={port}, id={self.busy[port]}]'
                    )
                    del self.busy[port]
            assignments = self._assign()
        self._start_jobs(assignments)

    def status(self) -> dict:
        with self.lock:
            queued = [s.id for s in self.queue]
            busy = dict(self.busy)
            idle = self._idle_ports()
        return {
            'load': len(queued) / max(self.MAX_TASK_COUNT, 1),
            'queueSize': len(queued),
            'maxTaskCount': self.MAX_TASK_COUNT,
            'busy': {str(port): sid for port, sid in busy.items()},
            'idle': idle,
            'queued': queued,
            'running': self.do_run,
        }

    def run(self):
        self.do_run = True
        logger().debug('start dispatcher loop')
        while self.do_run:
            try:
                self.reconcile()
            except Exception as e:
                logger().error(f'reconcile failed: {e}', exc_info=True)
            self._wakeup.wait(self.interval)
            self._wakeup.clear()
        logger().debug('exit dispatcher loop')

    def stop(self):
        self.do_run = False
        self._wakeup.set()
