"""
Background build jobs.

BuildQueue runs builds on a small thread pool so a chat turn returns while
the build continues. The session talks to a running build only through the
relay; the returned Future is for callers that want to wait (CLI, tests).
"""

from concurrent.futures import Future, ThreadPoolExecutor

import structlog

from toolsmith.builder.loop import BuildRequest, BuildResult, CapabilityBuilder

logger = structlog.get_logger(__name__)


class BuildQueue:
    """
    Thread pool for background builds.

    Usage:
        queue = BuildQueue(builder, workers=2)
        future = queue.submit(BuildRequest(build_id=cap.id, description=cap.description))
        ...
        queue.shutdown()
    """

    def __init__(self, builder: CapabilityBuilder, workers: int = 2):
        self.builder = builder
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="build")

    def submit(self, request: BuildRequest) -> Future[BuildResult]:
        logger.info("build_queue.submitted", build_id=request.build_id)
        return self._pool.submit(self._run, request)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "BuildQueue":
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()

    def _run(self, request: BuildRequest) -> BuildResult:
        try:
            return self.builder.run(request)
        except Exception as e:  # noqa: BLE001
            logger.exception("build_queue.job_failed", build_id=request.build_id)
            return BuildResult(success=False, error=str(e) or type(e).__name__)


class SynchronousBuildQueue(BuildQueue):
    """Runs each build inline on submit. Used by `toolsmith build` and tests."""

    def __init__(self, builder: CapabilityBuilder):
        self.builder = builder

    def submit(self, request: BuildRequest) -> Future[BuildResult]:
        future: Future[BuildResult] = Future()
        future.set_result(self._run(request))
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None
