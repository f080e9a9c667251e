"""
Common utility functions shared across multiple modules.
"""

import os
import shutil
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from pbrtapi.config.constants import PROCESS_POLL_INTERVAL
from pbrtapi.utils.logger import RichLogger

logger = RichLogger.get_logger("pbrtapi.common")


@dataclass
class ProcessResult:
    """Outcome of an external process run."""
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists at the specified path.

    Args:
        path: Path to the directory

    Returns:
        Path object for the directory
    """
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def atomic_write(path: Union[str, Path], data: Union[str, bytes], encoding: str = "utf-8") -> Path:
    """
    Write a file through a temporary sibling and publish it with ``os.replace``.

    Readers never observe a partially written file.

    Args:
        path: Destination file path
        data: Text or bytes to write
        encoding: Encoding used when ``data`` is text

    Returns:
        Path of the written file
    """
    target = Path(path)
    ensure_directory(target.parent)
    payload = data.encode(encoding) if isinstance(data, str) else data
    fd, tmp_path = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".partial", dir=str(target.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return target


def run_subprocess(
    command: List[str],
    timeout: Optional[float] = 60,
    cwd: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ProcessResult:
    """
    Run a subprocess command and return its results safely.

    The child is polled so that a set ``cancel_event`` or an expired
    ``timeout`` kills it promptly.

    Args:
        command: Command list to execute
        timeout: Maximum time in seconds to wait, or None for no limit
        cwd: Working directory for the child
        cancel_event: Event that aborts the run when set

    Returns:
        ProcessResult with the captured output
    """
    logger.debug(f"Running: {' '.join(command)} (cwd={cwd or os.getcwd()})")

    try:
        process = subprocess.Popen(
            command,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except OSError as e:
        logger.error(f"Unable to start {command[0]}: {e}")
        return ProcessResult(returncode=127, stdout="", stderr=str(e))

    waited = 0.0
    while True:
        try:
            stdout, stderr = process.communicate(timeout=PROCESS_POLL_INTERVAL)
            return ProcessResult(process.returncode, stdout or "", stderr or "")
        except subprocess.TimeoutExpired:
            waited += PROCESS_POLL_INTERVAL

        cancelled = cancel_event is not None and cancel_event.is_set()
        timed_out = timeout is not None and waited >= timeout
        if cancelled or timed_out:
            process.kill()
            stdout, stderr = process.communicate()
            if timed_out:
                logger.warning(f"Command timed out after {timeout}s: {' '.join(command)}")
            else:
                logger.warning(f"Command cancelled: {' '.join(command)}")
            return ProcessResult(
                returncode=process.returncode if process.returncode is not None else -1,
                stdout=stdout or "",
                stderr=stderr or "",
                timed_out=timed_out,
                cancelled=cancelled and not timed_out,
            )


def check_tool_availability(tools: Dict[str, str]) -> Dict[str, bool]:
    """
    Check which external executables can be found.

    Args:
        tools: Mapping of display name to executable path or name

    Returns:
        Dictionary mapping names to availability status
    """
    availability = {}
    for name, path in tools.items():
        found = bool(path) and (os.path.isfile(path) and os.access(path, os.X_OK) or shutil.which(path) is not None)
        availability[name] = found
        if not found:
            logger.warning(f"External tool '{name}' was not found at {path}")
    return availability
