import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import List, Optional, Union

from pbrtapi.config.config import config_class as config
from pbrtapi.config.constants import PathMode
from pbrtapi.processing.exceptions import ExternalToolError
from pbrtapi.processing.paths import PathSanitizer
from pbrtapi.utils.cache import MISS, CacheResult, RenderCache
from pbrtapi.utils.common import ensure_directory, run_subprocess
from pbrtapi.utils.logger import RichLogger
from pbrtapi.utils.timing import timeit

logger = RichLogger.get_logger("pbrtapi.renderers.pbrt")


class PbrtRenderer:
    """
    Renders scene text with the ``pbrt`` binary behind the render cache.

    The cache key is the fingerprint of the bytes as submitted. The scene is
    sanitized before it reaches the renderer, which runs in the uploads root
    so that model-relative texture paths resolve.
    """

    def __init__(
        self,
        cache: Optional[RenderCache] = None,
        uploads_root: Optional[Union[str, os.PathLike]] = None,
        executable: Optional[str] = None,
        timeout: Optional[float] = None,
        gpu: Optional[bool] = None,
        gpu_device: Optional[int] = None,
        threads: Optional[int] = None,
        use_cache: Optional[bool] = None,
    ) -> None:
        """
        Initialize the renderer with settings from the configuration.

        Args:
            cache: Render cache, created in the configured cache folder if omitted
            uploads_root: Working directory for the renderer
            executable: Path to the pbrt binary
            timeout: Render timeout in seconds
            gpu: Pass ``--gpu`` to pbrt
            gpu_device: GPU index used with ``--gpu``
            threads: Value for ``--nthreads``
            use_cache: Look up and store images in the cache; every render runs pbrt when False
        """
        self.uploads_root = Path(uploads_root or config.UPLOADS_ROOT).resolve()
        self.cache = cache or RenderCache(config.CACHE_DIR, config.CACHE_EXT, config.CACHE_MAX_AGE)
        self.executable = executable or config.PBRT_PATH
        self.timeout = timeout or config.PBRT_TIMEOUT
        self.gpu = config.PBRT_GPU if gpu is None else gpu
        self.gpu_device = config.PBRT_GPU_DEVICE if gpu_device is None else gpu_device
        self.threads = threads or config.PBRT_THREADS
        self.use_cache = config.ENABLE_CACHE if use_cache is None else use_cache
        self.sanitizer = PathSanitizer(self.uploads_root)
        self.tmp_root = self.uploads_root / os.path.basename(config.TMP_DIR)

    def build_command(self, scene_path: Union[str, os.PathLike], output_path: Union[str, os.PathLike]) -> List[str]:
        command = [self.executable]
        if self.gpu:
            command += ["--gpu", "--gpu-device", str(self.gpu_device)]
        command += ["--nthreads", str(self.threads), "--outfile", str(output_path), str(scene_path)]
        return command

    def _run(self, scene_text: str, cancel_event: Optional[threading.Event]) -> bytes:
        ensure_directory(self.tmp_root)
        work_dir = Path(tempfile.mkdtemp(prefix="render_", dir=str(self.tmp_root)))
        scene_path = work_dir / "scene.pbrt"
        output_path = work_dir / f"output{self.cache.extension}"
        try:
            scene_path.write_text(scene_text, encoding="utf-8")
            command = self.build_command(scene_path, output_path)
            result = run_subprocess(command, timeout=self.timeout, cwd=str(self.uploads_root), cancel_event=cancel_event)

            if result.timed_out:
                raise ExternalToolError(
                    "pbrt", f"timed out after {self.timeout}s",
                    result.returncode, result.stdout, result.stderr, timed_out=True,
                )
            if result.cancelled:
                raise ExternalToolError("pbrt", "render cancelled", result.returncode, result.stdout, result.stderr)
            if result.returncode != 0:
                logger.error(f"pbrt exited with code {result.returncode}")
                raise ExternalToolError(
                    "pbrt", f"exited with code {result.returncode}",
                    result.returncode, result.stdout, result.stderr,
                )
            if not output_path.is_file():
                raise ExternalToolError(
                    "pbrt", "no image was written",
                    result.returncode, result.stdout, result.stderr,
                )
            return output_path.read_bytes()
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    @timeit(log_level="info")
    def render(
        self,
        scene_bytes: bytes,
        previous_fingerprint: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CacheResult:
        """
        Render submitted scene bytes, reusing the cached image when possible.

        Args:
            scene_bytes: Scene exactly as submitted
            previous_fingerprint: Fingerprint of the scene this one replaces;
                its cache entry is dropped when it differs
            cancel_event: Event that aborts the render when set

        Returns:
            CacheResult with the image bytes and hit/miss/shared status

        Raises:
            SecurityViolation: If the scene references unsafe paths
            ExternalToolError: If pbrt fails; no cache entry is created
        """
        fingerprint = self.cache.fingerprint(scene_bytes)
        scene_text = self.sanitizer.sanitize(scene_bytes.decode("utf-8", errors="replace"), PathMode.RELATIVE)

        if previous_fingerprint and previous_fingerprint != fingerprint:
            self.cache.discard(previous_fingerprint)

        if not self.use_cache:
            result = CacheResult(self._run(scene_text, cancel_event), fingerprint, MISS)
        else:
            result = self.cache.get_or_render(fingerprint, lambda: self._run(scene_text, cancel_event))
        logger.info(f"Render {fingerprint[:12]}: {result.status.upper()}")
        return result

    def render_file(self, scene_path: Union[str, os.PathLike], **kwargs) -> CacheResult:
        return self.render(Path(scene_path).read_bytes(), **kwargs)

    def render_text(self, scene_text: str, **kwargs) -> CacheResult:
        return self.render(scene_text.encode("utf-8"), **kwargs)
