import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from . import config
from .utils import logger

SOURCE_NAME = 'main.go'


def create_workspace(submission_id: str, root_dir: Path | None = None) -> Path:
    """
    Create a fresh per-submission directory. A random suffix keeps a re-sent
    submission from colliding with a run that is still being cleaned up.
    """
    root_dir = Path(root_dir or config.SUBMISSION_DIR)
    workspace = root_dir / f'{submission_id}-{uuid.uuid4().hex[:8]}'
    workspace.mkdir(parents=True)
    return workspace


def write_source(workspace: Path, source_code: str) -> Path:
    source_path = workspace / SOURCE_NAME
    source_path.write_text(source_code)
    logger().debug(f'write source [path={source_path}]')
    return source_path


def clean_data(workspace: Path):
    try:
        shutil.rmtree(workspace)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger().warning(f'remove workspace failed [path={workspace}]: {exc}')


@contextmanager
def workspace(submission_id: str, root_dir: Path | None = None):
    """Workspace that is removed on every exit path."""
    path = create_workspace(submission_id, root_dir)
    try:
        yield path
    finally:
        clean_data(path)
