"""
Supervisor for the pool of judge worker processes.

Each worker is a ``python -m runner.server --port N`` child process. The
manager owns the ``Popen`` handles, keeps a registry keyed by port, mirrors
that registry to ``WORKER_STATE_FILE`` for visibility, and notifies listeners
when a worker exits.
"""

import atexit
import json
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import requests as rq

from . import config
from .constant import WorkerState
from .exception import WorkerNotFoundError, WorkerSpawnError
from .utils import logger

PROJECT_ROOT = Path(__file__).resolve().parent.parent
READY_POLL_INTERVAL = 0.2
SIGNAL_LOCK_TIMEOUT = 1.0


@dataclass
class WorkerRecord:
    port: int
    pid: int
    state: WorkerState = WorkerState.STARTING
    startedAt: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            'port': self.port,
            'pid': self.pid,
            'state': self.state.value,
            'startTime': self.startedAt.isoformat(),
        }


def probe_health(port: int) -> bool:
    try:
        resp = rq.get(
            f'http://{config.WORKER_HOST}:{port}/health',
            timeout=1,
        )
    except rq.RequestException:
        return False
    return resp.ok


class WorkerManager:

    def __init__(
        self,
        base_port: Optional[int] = None,
        state_file: Optional[Path] = None,
        kill_timeout: Optional[float] = None,
        start_timeout: Optional[float] = None,
        ready_check: Callable[[int], bool] = probe_health,
    ):
        if base_port is None:
            base_port = config.get_dispatcher_limits()['worker_base_port']
        self.base_port = base_port
        self.state_file = Path(state_file or config.WORKER_STATE_FILE)
        self.kill_timeout = (config.WORKER_KILL_TIMEOUT
                             if kill_timeout is None else kill_timeout)
        self.start_timeout = (config.WORKER_START_TIMEOUT
                              if start_timeout is None else start_timeout)
        self.ready_check = ready_check
        self.lock = threading.Lock()
        self.workers: Dict[int, WorkerRecord] = {}
        self._procs: Dict[int, subprocess.Popen] = {}
        self._exit_callbacks: List[Callable[[int, int], None]] = []
        self._closed = False
        self._hooks_installed = False
        self._cleanup_orphans()

    def on_exit(self, callback: Callable[[int, int], None]):
        """
        Register `callback(port, pid)`, called after a worker process exits
        while it still owned its port.
        """
        self._exit_callbacks.append(callback)

    def command(self, port: int) -> List[str]:
        return [sys.executable, '-m', 'runner.server', '--port', str(port)]

    def _next_port(self) -> int:
        if not self.workers:
            return self.base_port
        return max(self.workers) + 1

    def spawn(self, port: Optional[int] = None) -> WorkerRecord:
        with self.lock:
            if self._closed:
                raise WorkerSpawnError('worker manager is shut down')
            if port is None:
                port = self._next_port()
            current = self.workers.get(port)
            if current is not None and current.state != WorkerState.STOPPED:
                raise WorkerSpawnError(f'port {port} is already in use')
            try:
                proc = subprocess.Popen(self.command(port), cwd=PROJECT_ROOT)
            except OSError as e:
                raise WorkerSpawnError(
                    f'cannot start worker on port {port}: {e}') from e
            record = WorkerRecord(port=port, pid=proc.pid)
            self.workers[port] = record
            self._procs[port] = proc
            self._persist()
            snapshot = replace(record)
        logger().info(f'spawn worker [port={port}, pid={proc.pid}]')
        threading.Thread(
            target=self._watch,
            args=(port, proc),
            name=f'worker-reaper-{port}',
            daemon=True,
        ).start()
        return snapshot

    def _watch(self, port: int, proc: subprocess.Popen):
        if self._wait_ready(port, proc):
            with self.lock:
                record = self.workers.get(port)
                if record is not None and record.pid == proc.pid:
                    record.state = WorkerState.RUNNING
                    self._persist()
            logger().info(f'worker ready [port={port}, pid={proc.pid}]')
        returncode = proc.wait()
        with self.lock:
            record = self.workers.get(port)
            owned = record is not None and record.pid == proc.pid
            if owned:
                record.state = WorkerState.STOPPED
                self._procs.pop(port, None)
                self._persist()
        logger().warning(
            f'worker exited [port={port}, pid={proc.pid}, code={returncode}]')
        if not owned:
            # killed, or the port already belongs to a newer worker
            return
        for callback in list(self._exit_callbacks):
            try:
                callback(port, proc.pid)
            except Exception as e:
                logger().error(
                    f'worker exit callback failed [port={port}]: {e}',
                    exc_info=True,
                )

    def _wait_ready(self, port: int, proc: subprocess.Popen) -> bool:
        deadline = time.monotonic() + self.start_timeout
        while time.monotonic() < deadline:
            if proc.poll() is not None:
                return False
            if self.ready_check(port):
                return True
            time.sleep(READY_POLL_INTERVAL)
        logger().error(
            f'worker not ready in time, terminate it [port={port}, pid={proc.pid}]'
        )
        self._terminate(proc)
        return False

    def _terminate(self, proc: subprocess.Popen):
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired:
            logger().warning(f'worker ignored SIGTERM, kill it [pid={proc.pid}]')
            proc.kill()
            proc.wait()

    def kill(self, port: int):
        with self.lock:
            record = self.workers.pop(port, None)
            proc = self._procs.pop(port, None)
            if record is None:
                raise WorkerNotFoundError(f'no worker on port {port}')
            self._persist()
        logger().info(f'kill worker [port={port}, pid={record.pid}]')
        if proc is not None:
            self._terminate(proc)

    def kill_all(self):
        with self.lock:
            ports = sorted(self.workers)
        for port in ports:
            try:
                self.kill(port)
            except WorkerNotFoundError:
                pass
        with self.lock:
            self.workers.clear()
            self._procs.clear()

    def list(self) -> List[WorkerRecord]:
        with self.lock:
            return [replace(self.workers[p]) for p in sorted(self.workers)]

    def get(self, port: int) -> Optional[WorkerRecord]:
        with self.lock:
            record = self.workers.get(port)
            return None if record is None else replace(record)

    # caller holds self.lock
    def _persist(self):
        data = {
            'ports': sorted(self.workers),
            'runners': [
                self.workers[p].to_dict() for p in sorted(self.workers)
            ],
        }
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.state_file.with_name(self.state_file.name + '.tmp')
            tmp.write_text(json.dumps(data, indent=2))
            os.replace(tmp, self.state_file)
        except OSError as e:
            logger().warning(
                f'write worker state failed [path={self.state_file}]: {e}')

    def _cleanup_orphans(self):
        try:
            data = json.loads(self.state_file.read_text())
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger().warning(
                f'discard unreadable worker state [path={self.state_file}]: {e}'
            )
            data = {}
        for runner in data.get('runners', []):
            pid = runner.get('pid')
            if not isinstance(pid, int) or pid <= 0 or pid == os.getpid():
                continue
            if runner.get('state') == WorkerState.STOPPED.value:
                continue
            if not _is_worker_process(pid):
                continue
            logger().warning(
                f'terminate orphan worker [port={runner.get("port")}, pid={pid}]'
            )
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                pass
            except PermissionError as e:
                logger().warning(f'cannot terminate orphan [pid={pid}]: {e}')
        self.state_file.unlink(missing_ok=True)

    def shutdown(self):
        with self.lock:
            if self._closed:
                return
            self._closed = True
        logger().info('shut down worker pool')
        self.kill_all()
        self.state_file.unlink(missing_ok=True)

    def install_shutdown_hooks(self):
        if self._hooks_installed:
            return
        self._hooks_installed = True
        atexit.register(self.shutdown)
        if threading.current_thread() is not threading.main_thread():
            logger().debug('not in main thread, skip signal handlers')
            return
        for signum in (signal.SIGTERM, signal.SIGINT):
            previous = signal.getsignal(signum)

            def handler(signum, frame, previous=previous):
                self._shutdown_from_signal(signum)
                if callable(previous):
                    previous(signum, frame)
                elif previous != signal.SIG_IGN:
                    signal.signal(signum, signal.SIG_DFL)
                    os.kill(os.getpid(), signum)

            signal.signal(signum, handler)

    def _shutdown_from_signal(self, signum):
        # the handler may have interrupted this thread inside a locked section
        if not self.lock.acquire(timeout=SIGNAL_LOCK_TIMEOUT):
            logger().error(
                f'worker registry is locked, skip cleanup [signal={signum}]')
            return
        self.lock.release()
        self.shutdown()


def _is_worker_process(pid: int) -> bool:
    # pids get reused, only touch processes that still look like a worker
    try:
        cmdline = Path(f'/proc/{pid}/cmdline').read_bytes()
    except OSError:
        return False
    return b'runner.server' in cmdline
