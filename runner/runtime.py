"""
Container runtime capability used by the sandbox.

:class:`SandboxRuntime` is the small surface the judging logic needs
(create / attach / start / wait / stop / remove, plus image management).
:class:`DockerRuntime` implements it on top of the low level
``docker.APIClient``; tests substitute a scripted fake.
"""

from __future__ import annotations

import io
import socket
import tarfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Tuple

import docker
import requests
from docker.utils.socket import frames_iter

from dispatcher import config
from dispatcher.utils import logger

STDOUT = 1
STDERR = 2


class SandboxTimeout(Exception):
    """Raised when a bounded wait on a container expires."""


class RuntimeUnavailable(Exception):
    """Raised when the container runtime cannot be reached."""


class ImageBuildError(Exception):
    """Raised when the execution image cannot be built."""


@dataclass
class ContainerSpec:
    image: str
    command: List[str]
    executable_host_path: str
    executable_container_path: str
    user: str
    working_dir: str
    memory_limit_mb: int = 0
    cpu_count: float = 0.0
    labels: Dict[str, str] = field(default_factory=dict)


class AttachedStream(ABC):
    """Bidirectional attachment to a container's stdio."""

    @abstractmethod
    def write_stdin(self, data: bytes) -> None:
        ...

    @abstractmethod
    def close_stdin(self) -> None:
        ...

    @abstractmethod
    def frames(self) -> Iterator[Tuple[int, bytes]]:
        """Yield ``(stream, payload)`` pairs, stream is STDOUT or STDERR."""

    @abstractmethod
    def close(self) -> None:
        ...


class SandboxRuntime(ABC):

    @abstractmethod
    def ping(self) -> None:
        ...

    @abstractmethod
    def image_exists(self, image: str) -> bool:
        ...

    @abstractmethod
    def build_image(self, image: str, dockerfile: str) -> str:
        """Build `image` from `dockerfile`, return the build log."""

    @abstractmethod
    def create(self, spec: ContainerSpec) -> str:
        """Create a container and return its id."""

    @abstractmethod
    def attach(self, container_id: str) -> AttachedStream:
        ...

    @abstractmethod
    def start(self, container_id: str) -> None:
        ...

    @abstractmethod
    def wait(self, container_id: str, timeout: float) -> int:
        """
        Block until the container is no longer running and return its exit
        code. Raise :class:`SandboxTimeout` if it is still running after
        `timeout` seconds.
        """

    @abstractmethod
    def stop(self, container_id: str, timeout: int) -> None:
        ...

    @abstractmethod
    def remove(self, container_id: str) -> None:
        ...

    def remove_labeled(self, label: str, value: str | None = None) -> int:
        return 0

    def close(self) -> None:
        pass


class DockerAttachedStream(AttachedStream):

    def __init__(self, sock):
        self._sock = sock
        # SocketIO wraps the real socket, half-close needs the real one
        self._raw = getattr(sock, "_sock", sock)
        try:
            # reads are bounded by the sandbox, not by the HTTP timeout
            self._raw.settimeout(None)
        except (AttributeError, OSError):
            pass

    def write_stdin(self, data: bytes) -> None:
        self._raw.sendall(data)

    def close_stdin(self) -> None:
        self._raw.shutdown(socket.SHUT_WR)

    def frames(self) -> Iterator[Tuple[int, bytes]]:
        return frames_iter(self._sock, tty=False)

    def close(self) -> None:
        try:
            self._sock.close()
        finally:
            if self._raw is not self._sock:
                self._raw.close()


class DockerRuntime(SandboxRuntime):

    def __init__(
        self,
        docker_url: str | None = None,
        timeout: int | None = None,
    ):
        self.docker_url = docker_url or config.DOCKER_URL
        try:
            self.client = docker.APIClient(
                base_url=self.docker_url,
                timeout=timeout or config.DOCKER_API_TIMEOUT,
            )
        except docker.errors.DockerException as exc:
            raise RuntimeUnavailable(
                f"cannot reach docker at {self.docker_url}: {exc}") from exc

    def ping(self) -> None:
        try:
            self.client.ping()
        except (docker.errors.DockerException,
                requests.RequestException) as exc:
            raise RuntimeUnavailable(
                f"docker ping failed [url={self.docker_url}]: {exc}") from exc

    def image_exists(self, image: str) -> bool:
        try:
            self.client.inspect_image(image)
        except docker.errors.ImageNotFound:
            return False
        except (docker.errors.APIError, requests.RequestException) as exc:
            raise RuntimeUnavailable(
                f"inspect image failed [image={image}]: {exc}") from exc
        return True

    def build_image(self, image: str, dockerfile: str) -> str:
        context = io.BytesIO()
        data = dockerfile.encode()
        with tarfile.open(fileobj=context, mode="w") as tar:
            info = tarfile.TarInfo("Dockerfile")
            info.size = len(data)
            info.mode = 0o644
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(data))
        context.seek(0)
        build_log = []
        try:
            for chunk in self.client.build(
                    fileobj=context,
                    custom_context=True,
                    tag=image,
                    rm=True,
                    forcerm=True,
                    decode=True,
                    timeout=config.DOCKER_BUILD_TIMEOUT,
            ):
                if "error" in chunk:
                    raise ImageBuildError(chunk["error"].strip())
                if "stream" in chunk:
                    build_log.append(chunk["stream"])
        except (docker.errors.APIError, requests.RequestException) as exc:
            raise ImageBuildError(f"failed to build {image}: {exc}") from exc
        return "".join(build_log)

    def create(self, spec: ContainerSpec) -> str:
        limits = {}
        if spec.memory_limit_mb > 0:
            # swap pinned to memory, i.e. no swap
            limits["mem_limit"] = f"{spec.memory_limit_mb}m"
            limits["memswap_limit"] = f"{spec.memory_limit_mb}m"
        if spec.cpu_count > 0:
            limits["nano_cpus"] = int(spec.cpu_count * 1e9)
        host_config = self.client.create_host_config(
            binds={
                spec.executable_host_path: {
                    "bind": spec.executable_container_path,
                    "mode": "ro",
                }
            },
            network_mode="none",
            security_opt=["no-new-privileges"],
            **limits,
        )
        container = self.client.create_container(
            image=spec.image,
            command=spec.command,
            user=spec.user,
            working_dir=spec.working_dir,
            stdin_open=True,
            tty=False,
            network_disabled=True,
            labels=spec.labels or None,
            host_config=host_config,
        )
        return container["Id"]

    def attach(self, container_id: str) -> AttachedStream:
        sock = self.client.attach_socket(
            container_id,
            params={
                "stdin": 1,
                "stdout": 1,
                "stderr": 1,
                "stream": 1,
            },
        )
        return DockerAttachedStream(sock)

    def start(self, container_id: str) -> None:
        self.client.start(container_id)

    def wait(self, container_id: str, timeout: float) -> int:
        try:
            status = self.client.wait(
                container_id,
                timeout=timeout,
                condition="not-running",
            )
        except requests.exceptions.ReadTimeout as exc:
            raise SandboxTimeout(str(exc)) from exc
        except requests.exceptions.ConnectionError as exc:
            # the unix socket adapter reports read timeouts this way
            if "timed out" in str(exc).lower():
                raise SandboxTimeout(str(exc)) from exc
            raise
        return status.get("StatusCode", -1)

    def stop(self, container_id: str, timeout: int) -> None:
        try:
            self.client.stop(container_id, timeout=timeout)
        except docker.errors.NotFound:
            pass

    def remove(self, container_id: str) -> None:
        try:
            self.client.remove_container(container_id, v=True, force=True)
        except docker.errors.NotFound:
            pass

    def remove_labeled(self, label: str, value: str | None = None) -> int:
        selector = label if value is None else f"{label}={value}"
        removed = 0
        for container in self.client.containers(
                all=True, filters={"label": selector}):
            cid = container["Id"]
            logger().info(f"Removing stale container: {cid[:12]}")
            try:
                self.client.remove_container(cid, v=True, force=True)
                removed += 1
            except docker.errors.APIError as exc:
                logger().warning(
                    f"Failed to remove stale container {cid[:12]}: {exc}")
        return removed

    def close(self) -> None:
        self.client.close()
