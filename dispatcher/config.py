import json
import os
from pathlib import Path

# backend (result sink) config
JUDGE_API_URL = os.getenv(
    'JUDGE_API_URL',
    'http://serve:5000',
)
RESULT_SINK_URL = os.getenv(
    'RESULT_SINK_URL',
    JUDGE_API_URL + '/internalapi/judge/{submission_id}',
)
# shared secret sent to the result sink
INTERNAL_API_KEY = os.getenv(
    'INTERNAL_API_KEY',
    'KoNoSandboxDa',
)
REPORT_TIMEOUT = float(os.getenv('REPORT_TIMEOUT', '10'))
REPORT_RETRIES = int(os.getenv('REPORT_RETRIES', '3'))

SUBMISSION_DIR = Path(os.getenv(
    'SUBMISSION_DIR',
    'submissions',
))
LOG_DIR = Path(os.getenv(
    'LOG_DIR',
    'logs',
))
# create directory
SUBMISSION_DIR.mkdir(parents=True, exist_ok=True)
LOG_DIR.mkdir(parents=True, exist_ok=True)

# ============================================================
# Worker pool
# ============================================================
WORKER_STATE_FILE = Path(
    os.getenv(
        'WORKER_STATE_FILE',
        '.config/workers.json',
    ))
WORKER_HOST = os.getenv('WORKER_HOST', '127.0.0.1')
# seconds to wait for SIGTERM before escalating to SIGKILL
WORKER_KILL_TIMEOUT = float(os.getenv('WORKER_KILL_TIMEOUT', '5'))
# slack added on top of the computed judging budget for a /run call
WORKER_REQUEST_SLACK = float(os.getenv('WORKER_REQUEST_SLACK', '30'))
# seconds a freshly spawned worker has to answer its health check
WORKER_START_TIMEOUT = float(os.getenv('WORKER_START_TIMEOUT', '10'))
# seconds between two reconcile passes of the dispatcher loop
RECONCILE_INTERVAL = float(os.getenv('RECONCILE_INTERVAL', '0.5'))

# ============================================================
# Sandbox
# ============================================================
DOCKER_URL = os.getenv('DOCKER_URL', 'unix://var/run/docker.sock')
# timeout for every docker API call that is not a bounded wait
DOCKER_API_TIMEOUT = int(os.getenv('DOCKER_API_TIMEOUT', '10'))
DEFAULT_DOCKER_IMAGE = os.getenv('DEFAULT_DOCKER_IMAGE',
                                 'go-judge-runner:latest')
CONTAINER_EXECUTABLE_PATH = '/app/program_to_run'
SANDBOX_USER = os.getenv('SANDBOX_USER', 'appuser')
GO_BINARY = os.getenv('GO_BINARY', 'go')
COMPILE_TIMEOUT = float(os.getenv('COMPILE_TIMEOUT', '30'))
# allowance for container start overhead on top of the time limit
START_GRACE = float(os.getenv('START_GRACE', '1'))
# bound for draining stdout/stderr and closing stdin after exit
STREAM_DRAIN_TIMEOUT = float(os.getenv('STREAM_DRAIN_TIMEOUT', '2'))
# grace period handed to `docker stop` during teardown
STOP_GRACE = int(os.getenv('STOP_GRACE', '5'))
# grace period when force-stopping a container that hit the time limit
TLE_STOP_GRACE = int(os.getenv('TLE_STOP_GRACE', '1'))

# submission defaults, used when the payload leaves a field empty
DEFAULT_TIME_LIMIT_MS = 2000
DEFAULT_MEMORY_LIMIT_MB = 64
DEFAULT_CPU_COUNT = 1.0

_DEFAULT_DISPATCHER_CONFIG_PATH = Path(
    os.getenv('DISPATCHER_CONFIG', '.config/dispatcher.json'))


def _load_dispatcher_config(path: Path) -> dict:
    try:
        with path.open() as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}


def get_dispatcher_limits(config_path: str | Path | None = None) -> dict:
    path = Path(
        config_path) if config_path else _DEFAULT_DISPATCHER_CONFIG_PATH
    cfg = _load_dispatcher_config(path) if path else {}
    queue_default = cfg.get('QUEUE_SIZE', 64)
    worker_count_default = cfg.get('WORKER_COUNT', 4)
    base_port_default = cfg.get('WORKER_BASE_PORT', 8081)
    return {
        'queue_size': int(os.getenv('QUEUE_SIZE', queue_default)),
        'worker_count': int(os.getenv('WORKER_COUNT', worker_count_default)),
        'worker_base_port': int(
            os.getenv('WORKER_BASE_PORT', base_port_default)),
    }


def get_path_mapping() -> dict:
    """
    Where the runner sees its workspace vs. where the docker daemon sees it.
    Both default to the same root, meaning no translation.
    """
    sandbox_root = os.getenv('SANDBOX_ROOT', str(SUBMISSION_DIR.parent))
    return {
        'sandbox_root': sandbox_root,
        'host_root': os.getenv('HOST_ROOT', sandbox_root),
    }


# ============================================================
# Docker Build Configuration
# ============================================================
DOCKER_BUILD_TIMEOUT = int(os.getenv('DOCKER_BUILD_TIMEOUT',
                                     '300'))  # 5 minutes
# every sandbox container carries this label, used to sweep leftovers
CONTAINER_LABEL = 'judge.submission'
# port of the worker that owns the container
WORKER_LABEL = 'judge.worker'
