from dataclasses import dataclass
from typing import Dict, List, Optional

from runner.runtime import (
    STDERR,
    STDOUT,
    AttachedStream,
    ContainerSpec,
    ImageBuildError,
    RuntimeUnavailable,
    SandboxRuntime,
    SandboxTimeout,
)


@dataclass
class Script:
    """What the next created container does."""
    exit_code: int = 0
    stdout: str = ''
    stderr: str = ''
    timeout: bool = False
    # one of 'create', 'attach', 'start', 'wait'
    fail_on: Optional[str] = None


class FakeStream(AttachedStream):

    def __init__(self, script: Script):
        self.script = script
        self.stdin = bytearray()
        self.stdin_closed = False
        self.closed = False

    def write_stdin(self, data: bytes):
        self.stdin.extend(data)

    def close_stdin(self):
        self.stdin_closed = True

    def frames(self):
        if self.script.stdout:
            yield STDOUT, self.script.stdout.encode()
        if self.script.stderr:
            yield STDERR, self.script.stderr.encode()

    def close(self):
        self.closed = True


class FakeRuntime(SandboxRuntime):
    """
    Scripted stand-in for docker. Each `create` consumes the next script;
    every call is recorded so tests can check that nothing is leaked.
    """

    def __init__(
        self,
        scripts: Optional[List[Script]] = None,
        image_present: bool = True,
        build_error: Optional[str] = None,
        unavailable: bool = False,
    ):
        self.scripts = list(scripts or [])
        self.image_present = image_present
        self.build_error = build_error
        self.unavailable = unavailable
        self.built: List[str] = []
        self.specs: List[ContainerSpec] = []
        self.created: List[str] = []
        self.live = set()
        self.started: List[str] = []
        self.stopped: List[tuple] = []
        self.removed: List[str] = []
        self.streams: Dict[str, FakeStream] = {}
        self._by_id: Dict[str, Script] = {}

    def ping(self):
        if self.unavailable:
            raise RuntimeUnavailable('docker is down')

    def image_exists(self, image):
        return self.image_present

    def build_image(self, image, dockerfile):
        if self.build_error:
            raise ImageBuildError(self.build_error)
        self.built.append(image)
        self.image_present = True
        return 'Successfully built'

    def create(self, spec):
        script = self.scripts.pop(0) if self.scripts else Script()
        self.specs.append(spec)
        if script.fail_on == 'create':
            raise RuntimeError('no such image')
        cid = f'{len(self.created):012d}' + 'f' * 52
        self.created.append(cid)
        self.live.add(cid)
        self._by_id[cid] = script
        return cid

    def attach(self, container_id):
        script = self._by_id[container_id]
        if script.fail_on == 'attach':
            raise RuntimeError('attach refused')
        stream = FakeStream(script)
        self.streams[container_id] = stream
        return stream

    def start(self, container_id):
        if self._by_id[container_id].fail_on == 'start':
            raise RuntimeError('cannot start')
        self.started.append(container_id)

    def wait(self, container_id, timeout):
        script = self._by_id[container_id]
        if script.timeout:
            raise SandboxTimeout(f'still running after {timeout}s')
        if script.fail_on == 'wait':
            raise RuntimeError('connection reset')
        return script.exit_code

    def stop(self, container_id, timeout):
        self.stopped.append((container_id, timeout))

    def remove(self, container_id):
        self.removed.append(container_id)
        self.live.discard(container_id)
