import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dispatcher import config
from dispatcher.utils import logger

EXECUTABLE_NAME = 'program_to_run'


@dataclass
class CompileResult:
    ok: bool
    executable: Optional[Path]
    log: str


def compile_program(
    source_path: Path,
    output_dir: Path,
    timeout: float | None = None,
) -> CompileResult:
    """
    Build `source_path` into a standalone executable inside `output_dir`.

    Any non-zero compiler exit is a failure, even if an executable was
    left behind; the compiler's combined output is kept verbatim.
    """
    timeout = config.COMPILE_TIMEOUT if timeout is None else timeout
    executable = (output_dir / EXECUTABLE_NAME).absolute()
    executable.unlink(missing_ok=True)
    command = [
        config.GO_BINARY,
        'build',
        '-o',
        str(executable),
        str(source_path.absolute()),
    ]
    logger().info(f'Running compile command: {" ".join(command)}')
    try:
        proc = subprocess.run(
            command,
            cwd=output_dir,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            env=_compile_env(),
        )
    except subprocess.TimeoutExpired as exc:
        output = (exc.output or b'').decode('utf-8', 'replace')
        return CompileResult(
            ok=False,
            executable=None,
            log=output + f'\ncompilation timed out after {timeout:g}s',
        )
    except FileNotFoundError as exc:
        return CompileResult(
            ok=False,
            executable=None,
            log=f'compiler not found: {exc}',
        )
    output = proc.stdout.decode('utf-8', 'replace')
    if proc.returncode != 0:
        executable.unlink(missing_ok=True)
        return CompileResult(ok=False, executable=None, log=output)
    if not executable.exists():
        return CompileResult(
            ok=False,
            executable=None,
            log=output +
            f'\ncompilation finished but executable not found at {executable}',
        )
    return CompileResult(ok=True, executable=executable, log=output)


def _compile_env() -> dict:
    env = dict(os.environ)
    # the sandbox image has no libc to link against
    env.setdefault('CGO_ENABLED', '0')
    return env
