"""Wiring of the certificate manager daemon."""
import datetime
import logging
import threading
import traceback
from typing import Callable
from typing import Optional

from vault_cert_manager._internal import constants
from vault_cert_manager._internal import health
from vault_cert_manager._internal import metrics
from vault_cert_manager._internal import server
from vault_cert_manager._internal import status
from vault_cert_manager._internal.renewal import LifecycleManager
from vault_cert_manager._internal.session import BackendSession
from vault_cert_manager.configuration import Config

logger = logging.getLogger(__name__)


class PeriodicTask(threading.Thread):
    """Calls func every interval until stop_event is set.

    Exceptions raised by func are logged and do not end the loop.

    """
    def __init__(self, name: str, interval: datetime.timedelta, func: Callable[[], None],
                 stop_event: threading.Event) -> None:
        super().__init__(name=name, daemon=True)
        self.interval = interval.total_seconds()
        self.func = func
        self.stop_event = stop_event

    def run(self) -> None:
        while not self.stop_event.wait(self.interval):
            try:
                self.func()
            except Exception as e:  # pylint: disable=broad-except
                logger.error('Periodic task %s failed with error: %s', self.name, e)
                logger.debug('Traceback was:\n%s', traceback.format_exc())


class Application:
    """Certificate manager daemon.

    Every entry point into the `.LifecycleManager` (the periodic pass,
    signals and the HTTP rotation API) goes through this class, which
    runs them one at a time.

    :param .Config config: validated configuration
    :param .BackendSession session: authenticated session; a new one is
        created, and authentication failures raised, if omitted

    """
    def __init__(self, config: Config, session: Optional[BackendSession] = None,
                 collector: Optional[metrics.Collector] = None,
                 checker: Optional[health.SyncChecker] = None,
                 stop_event: Optional[threading.Event] = None) -> None:
        self.config = config
        self.stop_event = stop_event or threading.Event()
        self.collector = collector or metrics.Collector()
        self.session = session or BackendSession(config.vault, stop_event=self.stop_event)
        self.checker = checker or health.SyncChecker()
        self.manager = LifecycleManager(self.session, collector=self.collector)
        for target in config.certificates:
            self.manager.register(target)

        self._process_lock = threading.Lock()
        self._checks: dict[str, health.CheckResult] = {}
        self._checks_lock = threading.Lock()
        self._tasks: list[PeriodicTask] = []
        self._workers: list[threading.Thread] = []
        self._workers_lock = threading.Lock()
        self.server: Optional[server.HTTPServer] = None

    def process_once(self) -> None:
        """Renew due and issue missing certificates."""
        with self._process_lock:
            self.manager.process_all()

    def force_rotate(self, name: str) -> None:
        """Issue a new certificate for name now.

        :raises .errors.UnknownTargetError: if name is not managed
        :raises .errors.Error: if the rotation failed

        """
        with self._process_lock:
            self.manager.force_rotate(name)

    def force_rotate_all(self) -> None:
        """Issue a new certificate for every target now.

        :raises .errors.Error: if any rotation failed

        """
        with self._process_lock:
            self.manager.force_rotate_all()

    def rotate_all_in_background(self) -> threading.Thread:
        """Run `force_rotate_all` on a worker thread joined by `stop`.

        Failures are logged.

        """
        worker = threading.Thread(target=self._rotate_all_logged, name='rotate-all',
                                  daemon=True)
        with self._workers_lock:
            self._workers = [thread for thread in self._workers if thread.is_alive()]
            self._workers.append(worker)
        worker.start()
        return worker

    def _rotate_all_logged(self) -> None:
        try:
            self.force_rotate_all()
        except Exception as e:  # pylint: disable=broad-except
            logger.error('Requested rotation of every certificate failed: %s', e)
            logger.debug('Traceback was:\n%s', traceback.format_exc())

    def run_health_checks(self) -> None:
        """Probe every configured endpoint and refresh the metrics."""
        results = {managed.name: self.checker.check(managed)
                   for managed in self.manager.managed_certificates}
        with self._checks_lock:
            self._checks = results
        self.collector.update(self.statuses())

    def statuses(self) -> list[status.CertStatus]:
        """Current status of every managed certificate."""
        with self._checks_lock:
            checks = dict(self._checks)
        return status.build_statuses(self.manager.managed_certificates, checks)

    def metrics(self) -> bytes:
        """Prometheus exposition of the collector."""
        return self.collector.exposition()

    def start(self, serve: bool = True) -> None:
        """Run a first pass, then start background threads.

        :param bool serve: whether to start the HTTP server

        """
        self.process_once()
        self.run_health_checks()
        self.session.start(constants.SESSION_REFRESH_INTERVAL)
        self._tasks = [
            PeriodicTask('process', constants.PROCESS_INTERVAL,
                         self.process_once, self.stop_event),
            PeriodicTask('health', self.config.prometheus.refresh_interval,
                         self.run_health_checks, self.stop_event),
        ]
        for task in self._tasks:
            task.start()
        if serve:
            self.server = server.make_status_server(self, self.config.prometheus.port)
            self.server.start()

    def stop(self) -> None:
        """Stop every background thread and wait for them to exit."""
        logger.info('Shutting down')
        self.stop_event.set()
        if self.server is not None:
            self.server.shutdown_and_server_close()
            self.server = None
        with self._workers_lock:
            workers, self._workers = self._workers, []
        for worker in workers:
            worker.join()
        for task in self._tasks:
            task.join()
        self._tasks = []
        self.session.close()
