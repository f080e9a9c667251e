"""
Assimp wrapper that converts uploaded models into PBRT scene text.
"""

import os
import threading
from pathlib import Path
from typing import List, Optional, Union

from pbrtapi.utils.logger import RichLogger
from pbrtapi.utils.timing import timeit
from pbrtapi.utils.common import ensure_directory, run_subprocess
from .exceptions import ExternalToolError

logger = RichLogger.get_logger("pbrtapi.processing.assimp")


class AssimpConverter:
    """
    Run ``assimp export <model> <output> -fpbrt`` in the model's folder.
    """

    def __init__(self, executable: Optional[str] = None, timeout: Optional[float] = None):
        from pbrtapi.config.config import config_class as config
        self.executable = executable or config.ASSIMP_PATH
        self.timeout = timeout or config.ASSIMP_TIMEOUT

    def build_command(self, model_file: Union[str, os.PathLike], output_path: Union[str, os.PathLike]) -> List[str]:
        return [self.executable, "export", str(model_file), str(output_path), "-fpbrt"]

    @timeit(log_level="info")
    def convert(
        self,
        model_file: Union[str, os.PathLike],
        output_path: Union[str, os.PathLike],
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """
        Convert a model file to PBRT.

        Args:
            model_file: Absolute path to the source model
            output_path: Where the converter writes the scene text
            cancel_event: Event that aborts the conversion when set

        Returns:
            Path to the written scene file

        Raises:
            ExternalToolError: On a non-zero exit, a timeout, a cancellation
                or a missing output file
        """
        model_file = Path(model_file).resolve()
        output_path = Path(output_path).resolve()
        ensure_directory(output_path.parent)

        command = self.build_command(model_file, output_path)
        logger.info(f"Converting {model_file.name} with assimp")
        result = run_subprocess(command, timeout=self.timeout, cwd=str(model_file.parent), cancel_event=cancel_event)

        if result.timed_out:
            raise ExternalToolError(
                "assimp", f"timed out after {self.timeout}s",
                result.returncode, result.stdout, result.stderr, timed_out=True,
            )
        if result.cancelled:
            raise ExternalToolError("assimp", "conversion cancelled", result.returncode, result.stdout, result.stderr)
        if result.returncode != 0:
            logger.error(f"assimp exited with code {result.returncode}")
            raise ExternalToolError(
                "assimp", f"exited with code {result.returncode}",
                result.returncode, result.stdout, result.stderr,
            )
        if not output_path.is_file():
            raise ExternalToolError(
                "assimp", f"no output written to {output_path.name}",
                result.returncode, result.stdout, result.stderr,
            )

        logger.debug(f"assimp wrote {output_path} ({output_path.stat().st_size} bytes)")
        return output_path
