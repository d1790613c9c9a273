"""
Crawler scheduler that owns a mirror run and drives the per-resource tasks.
"""

import asyncio
import logging
import os
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Set
from urllib.parse import SplitResult

from .fetcher import FETCH_ERRORS, WebFetcher
from .parser import LinkExtractor
from .registry import Resource, ResourceRegistry, ResourceState, ResourceView
from .retry import RetryPolicy, Verdict, backoff_delay
from .sniff import detect_content_type
from .urls import InvalidURLError, parse_seed, root_file, url_string
from ..storage.filesystem import (
    MirrorStorage,
    OutputDirExistsError,
    PathSafetyError,
    StorageError,
    child_path,
    prepare_output_dir,
)
from ..utils.config import Config
from ..utils.logger import close_run_log, get_crawler_logger, open_run_log
from ..utils.monitoring import CrawlerMonitor, MetricsCollector
from ..utils.report import format_report

SEED_FILES = ('/robots.txt', '/sitemap.xml')


class RunState(Enum):
    """State of the scanner as a whole."""
    READY = "Ready"
    PREPARING = "Preparing"
    INCORRECT_URL = "Error: incorrect URL"
    OUTPUT_DIR_EXIST = "Error: output directory for this site already exists"
    OUTPUT_DIR_ERROR = "Error: cannot create output directory"
    SCAN_ERROR = "Error: scan aborted"
    SCANNING = "Scanning"
    COMPLETE = "Scan complete"

    @property
    def label(self) -> str:
        return self.value


RESTARTABLE_STATES = frozenset((
    RunState.READY,
    RunState.INCORRECT_URL,
    RunState.OUTPUT_DIR_EXIST,
    RunState.OUTPUT_DIR_ERROR,
    RunState.SCAN_ERROR,
    RunState.COMPLETE,
))


class CrawlerBusyError(RuntimeError):
    """start() was called while a run is preparing or scanning."""


@dataclass
class Run:
    """Everything about one crawl attempt; replaced on every start()."""
    url_text: str
    overwrite: bool
    max_retries: int
    state: RunState = RunState.READY
    seed: Optional[SplitResult] = None
    registry: Optional[ResourceRegistry] = None
    output_dir: Optional[str] = None
    started_at: Optional[float] = None
    scan_started_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[Exception] = None
    active_tasks: int = 0


@dataclass(frozen=True)
class ReportEntry:
    url: str
    mime: str
    status: str


@dataclass(frozen=True)
class CrawlReport:
    """Point-in-time listing of a run's resources with totals."""
    entries: List[ReportEntry]
    total: int
    external: int
    local: int
    total_bytes: int
    active_tasks: int
    elapsed: float


@dataclass
class _Scan:
    """Collaborators shared by every task of one run."""
    run: Run
    fetcher: WebFetcher
    storage: MirrorStorage
    extractor: LinkExtractor
    retry: RetryPolicy
    drained: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: Set[asyncio.Task] = field(default_factory=set)


def describe_status(view: ResourceView, max_retries: int) -> str:
    """Human-readable status of a resource."""
    state = view.state
    if not isinstance(state, ResourceState):
        raise ValueError(f"Unknown resource state: {state!r}")
    if state is ResourceState.REQUEST_WAIT_REPEAT:
        return f"{state.label} {view.repeats}/{max_retries}"
    if state.is_error:
        return f"Error: {state.label}: {view.error}"
    return state.label


class CrawlerScheduler:
    """
    Main scheduler that mirrors one site at a time.

    ``start()`` returns at once and runs the crawl on a background thread;
    ``crawl()`` is the same run as a coroutine. Progress is observed through
    ``state``, ``last_error``, ``output_dir`` and ``snapshot_report()``.
    """

    def __init__(self, config: Config, session: Optional[Any] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.session = session
        self.logger = logging.getLogger(__name__)
        self.url_log = get_crawler_logger(__name__)
        self.monitor = monitor or CrawlerMonitor(MetricsCollector(config.monitoring.prometheus_port))

        self._lock = threading.Lock()
        self._run = Run(url_text='', overwrite=False, max_retries=config.crawler.max_retries)
        self._thread: Optional[threading.Thread] = None

    # -- public API -------------------------------------------------------

    def start(self, url: str, overwrite: bool = False, max_retries: Optional[int] = None):
        """
        Start mirroring ``url`` in the background.

        Raises CrawlerBusyError if a run is already preparing or scanning.
        """
        run = self._begin(url, overwrite, max_retries)
        self._thread = threading.Thread(
            target=asyncio.run,
            args=(self._execute(run),),
            name='sitemirror-scan',
            daemon=True,
        )
        self._thread.start()

    async def crawl(self, url: str, overwrite: bool = False,
                    max_retries: Optional[int] = None) -> RunState:
        """Run a complete mirror in the current event loop."""
        run = self._begin(url, overwrite, max_retries)
        await self._execute(run)
        return run.state

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until a background run finishes. True if it did."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._run.state

    @property
    def last_error(self) -> Optional[Exception]:
        with self._lock:
            return self._run.error

    @property
    def output_dir(self) -> Optional[str]:
        with self._lock:
            return self._run.output_dir

    @property
    def seed(self) -> Optional[SplitResult]:
        with self._lock:
            return self._run.seed

    @property
    def registry(self) -> Optional[ResourceRegistry]:
        with self._lock:
            return self._run.registry

    @property
    def active_tasks(self) -> int:
        with self._lock:
            return self._run.active_tasks

    def snapshot_report(self, include_all: bool = True) -> CrawlReport:
        """
        Report on every resource of the current run.

        With ``include_all`` false only resources still being processed are
        listed; totals always cover everything.
        """
        with self._lock:
            run = self._run
            registry = run.registry
            active = run.active_tasks
            started = run.started_at
            finished = run.finished_at
            max_retries = run.max_retries

        entries = []
        total = external = total_bytes = 0
        for resource in (registry.snapshot() if registry else []):
            view = resource.view()
            total += 1
            if view.is_external:
                external += 1
            else:
                total_bytes += view.size
            if not include_all and view.state.is_terminal:
                continue
            entries.append(ReportEntry(view.url, view.mime, describe_status(view, max_retries)))

        elapsed = 0.0
        if started is not None:
            elapsed = (finished or time.time()) - started

        return CrawlReport(
            entries=entries,
            total=total,
            external=external,
            local=total - external,
            total_bytes=total_bytes,
            active_tasks=active,
            elapsed=elapsed,
        )

    # -- run lifecycle ----------------------------------------------------

    def _begin(self, url: str, overwrite: bool, max_retries: Optional[int]) -> Run:
        if max_retries is None:
            max_retries = self.config.crawler.max_retries
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        with self._lock:
            current = self._run.state
            if current not in RESTARTABLE_STATES:
                raise CrawlerBusyError(f"Cannot start the scanner while it is in state: \"{current.label}\"")
            run = Run(
                url_text=url,
                overwrite=overwrite,
                max_retries=max_retries,
                state=RunState.PREPARING,
                started_at=time.time(),
            )
            self._run = run
        return run

    def _finish(self, run: Run, state: RunState, error: Optional[Exception] = None):
        with self._lock:
            run.state = state
            run.error = error
            run.finished_at = time.time()
        if error is not None:
            self.logger.error(f"Scanner stopped in state '{state.label}': {error}")

    def _output_root(self) -> str:
        configured = self.config.crawler.output_root
        if configured:
            return os.path.abspath(configured)
        executable = sys.argv[0] or sys.executable
        if not executable:
            raise OSError("cannot locate the running executable")
        return os.path.dirname(os.path.abspath(executable))

    async def _execute(self, run: Run):
        try:
            seed = parse_seed(run.url_text)
        except InvalidURLError as e:
            self._finish(run, RunState.INCORRECT_URL, e)
            return

        try:
            home = self._output_root()
        except OSError as e:
            self._finish(run, RunState.OUTPUT_DIR_ERROR, e)
            return

        try:
            output_dir = child_path(home, seed.hostname)
        except PathSafetyError as e:
            self._finish(run, RunState.OUTPUT_DIR_ERROR, e)
            return

        with self._lock:
            run.seed = seed
            run.registry = ResourceRegistry(seed)
            run.output_dir = output_dir

        try:
            prepare_output_dir(output_dir, run.overwrite)
        except OutputDirExistsError as e:
            self._finish(run, RunState.OUTPUT_DIR_EXIST, e)
            return
        except StorageError as e:
            self._finish(run, RunState.OUTPUT_DIR_ERROR, e)
            return

        try:
            run_log = open_run_log(Path(home) / f"{seed.hostname}.log", self.config.logging)
        except OSError as e:
            self._finish(run, RunState.OUTPUT_DIR_ERROR, StorageError(f"Cannot create run log: {e}"))
            return

        try:
            await self._scan_site(run)
            self.logger.info("Full scan report:\n" + format_report(self.snapshot_report(True)))
            self._finish(run, RunState.COMPLETE)
        except Exception as e:
            self.logger.exception("Scan aborted")
            self._finish(run, RunState.SCAN_ERROR, e)
        finally:
            close_run_log(run_log)

    async def _scan_site(self, run: Run):
        crawler_config = self.config.crawler
        fetcher = WebFetcher(
            user_agent=crawler_config.user_agent,
            request_timeout=crawler_config.request_timeout,
            max_concurrent_requests=crawler_config.max_concurrent_requests,
            session=self.session,
        )
        async with fetcher:
            scan = _Scan(
                run=run,
                fetcher=fetcher,
                storage=MirrorStorage(run.output_dir, crawler_config.resolve_symlinks),
                extractor=LinkExtractor(run.seed),
                retry=RetryPolicy(run.max_retries),
            )
            with self._lock:
                run.state = RunState.SCANNING
                run.scan_started_at = time.time()

            self._spawn(scan, run.seed)
            for name in SEED_FILES:
                self._spawn(scan, root_file(run.seed, name))

            try:
                await scan.drained.wait()
            finally:
                for task in list(scan.tasks):
                    task.cancel()

        self.logger.info(f"Fetcher stats: {fetcher.get_stats()}")
        self.logger.info(f"Storage stats: {scan.storage.get_stats()}")
        self.logger.info(f"Run metrics: {self.monitor.get_summary()}")

    # -- per-resource tasks -----------------------------------------------

    def _spawn(self, scan: _Scan, parts: SplitResult):
        # Count first so the waiter can never observe zero too early.
        with self._lock:
            scan.run.active_tasks += 1
            count = scan.run.active_tasks
        self.monitor.update_active_tasks(count)

        task = asyncio.create_task(self._scan(scan, parts))
        scan.tasks.add(task)
        task.add_done_callback(scan.tasks.discard)

    async def _scan(self, scan: _Scan, parts: SplitResult):
        resource = None
        try:
            resource, created = scan.run.registry.register(parts)
            if created:
                await self._process(scan, resource)
        except Exception as e:
            self.logger.exception(f"Unexpected error while processing {url_string(parts)}")
            # Only the task that registered a resource may settle it.
            if resource is not None and created:
                state = resource.abandon(_error_text(e))
                if state is not None:
                    self.monitor.record_finished(state.name)
        finally:
            with self._lock:
                scan.run.active_tasks -= 1
                remaining = scan.run.active_tasks
            self.monitor.update_active_tasks(remaining)
            if remaining == 0:
                scan.drained.set()

    async def _process(self, scan: _Scan, resource: Resource):
        self.monitor.record_discovered()
        url = resource.url

        # Binary data sometimes assembles into huge bogus links.
        if len(url) > self.config.crawler.max_url_length:
            self._settle(resource, ResourceState.SKIP, f"Skipping link (too long): {url[:80]}...")
            return

        self.url_log.log_url_event(logging.INFO, url, "New link")

        if not resource.is_interesting:
            self._settle(resource, ResourceState.SKIP, log_message="Skipping link (not interesting)")
            return
        if resource.is_external:
            self._settle(resource, ResourceState.SKIP, log_message="Skipping link (external)")
            return

        body = await self._download(scan, resource)
        if body is None:
            return

        resource.set_state(ResourceState.READ)
        mime = detect_content_type(body)
        resource.set_mime(mime)

        found = await asyncio.to_thread(scan.extractor.extract, body, mime)
        if found.error:
            resource.set_read_error(found.error)
        for link in found.links:
            self._spawn(scan, link)

        resource.set_state(ResourceState.SAVE)
        try:
            path = await scan.storage.save(resource.parts.path, mime, body)
        except StorageError as e:
            self._settle(resource, ResourceState.SAVE_ERROR, str(e),
                         log_message="Skipping link (cannot save file)")
            return

        self.logger.debug(f"Saved {url} to {path}")
        self._settle(resource, ResourceState.COMPLETE, log_message="Saved")

    async def _download(self, scan: _Scan, resource: Resource) -> Optional[bytes]:
        """
        Fetch a resource body while holding an admission slot.

        Returns None once the resource has reached a terminal error state.
        """
        fetcher = scan.fetcher
        retry = scan.retry
        url = resource.url

        async with fetcher.slot():
            while True:
                resource.set_state(ResourceState.REQUEST)
                self.monitor.record_request()
                status_line = None
                try:
                    async with fetcher.request(url) as response:
                        verdict = retry.classify_status(response.status)
                        status_line = f"{response.status} {response.reason or ''}".strip()
                        if verdict is Verdict.OK:
                            if response.content_length:
                                resource.set_size(response.content_length)
                            resource.set_state(ResourceState.DOWNLOAD)
                            try:
                                body = await response.read()
                            except FETCH_ERRORS as e:
                                fetcher.record_failure()
                                if self._ordinary_failure(resource, retry, _error_text(e),
                                                          ResourceState.REQUEST, ResourceState.DOWNLOAD_ERROR,
                                                          "Skipping link (body download failed, retries exhausted)"):
                                    return None
                                continue
                            resource.set_size(len(body))
                            fetcher.record_download(len(body))
                            self.monitor.record_download(len(body))
                            return body
                except FETCH_ERRORS as e:
                    fetcher.record_failure()
                    if self._ordinary_failure(resource, retry, _error_text(e),
                                              ResourceState.REQUEST_WAIT_REPEAT, ResourceState.REQUEST_ERROR,
                                              "Skipping link (request retries exhausted)"):
                        return None
                    continue
                finally:
                    self.monitor.record_request_done()

                if verdict is Verdict.RETRY_BACKOFF:
                    _, attempt = resource.fail_attempt(status_line, None, ResourceState.REQUEST_WAIT_REPEAT,
                                                       ResourceState.REQUEST_ERROR)
                    self.monitor.record_retry('rate_limited')
                    self.url_log.log_url_event(logging.INFO, url, f"Rate limited ({status_line}), retry {attempt}")
                    await asyncio.sleep(backoff_delay(attempt))
                    continue

                if verdict is Verdict.RETRY:
                    if self._ordinary_failure(resource, retry, status_line,
                                              ResourceState.REQUEST_WAIT_REPEAT, ResourceState.REQUEST_ERROR,
                                              f"Skipping link ({status_line}, retries exhausted)"):
                        return None
                    continue

                self._settle(resource, ResourceState.REQUEST_ERROR, status_line,
                             log_message=f"Skipping link ({status_line})")
                return None

    def _ordinary_failure(self, resource: Resource, retry: RetryPolicy, error: str,
                          retry_state: ResourceState, error_state: ResourceState,
                          log_message: str) -> bool:
        """Count a bounded failure; True when the resource is now terminal."""
        state, attempt = resource.fail_attempt(error, retry.max_retries, retry_state, error_state)
        if state is error_state:
            self.url_log.log_url_event(logging.WARNING, resource.url, f"{log_message}: {error}")
            self.monitor.record_finished(state.name)
            return True
        self.monitor.record_retry('error')
        self.url_log.log_url_event(logging.INFO, resource.url, f"Retry {attempt}/{retry.max_retries} after: {error}")
        return False

    def _settle(self, resource: Resource, state: ResourceState, error: Optional[str] = None,
                log_message: Optional[str] = None):
        resource.set_state(state, error)
        self.monitor.record_finished(state.name)
        if log_message:
            level = logging.WARNING if state.is_error else logging.INFO
            self.url_log.log_url_event(level, resource.url, log_message)
        elif error:
            self.logger.info(error)


def _error_text(error: BaseException) -> str:
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
