from __future__ import annotations

from pathlib import Path
from dispatcher import config as dispatcher_config


class PathTranslator:
    """
    Translate paths between sandbox view and host (docker) view.

    A worker running inside a container compiles into its own filesystem,
    but bind mount sources are resolved by the docker daemon on the host.
    """

    def __init__(
        self,
        sandbox_root: str | Path | None = None,
        host_root: str | Path | None = None,
    ):
        mapping = dispatcher_config.get_path_mapping()
        self.sandbox_root = Path(
            sandbox_root or mapping["sandbox_root"]).expanduser().resolve()
        self.host_root = Path(host_root or mapping["host_root"]).expanduser()
        if not self.host_root.is_absolute():
            self.host_root = self.host_root.resolve()

    def to_host(self, path: str | Path) -> Path:
        """
        Convert a sandbox path (or absolute path) to host path for Docker binds.
        """
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = (self.sandbox_root / p).resolve()
        try:
            rel = p.relative_to(self.sandbox_root)
            return self.host_root / rel
        except ValueError:
            return p
