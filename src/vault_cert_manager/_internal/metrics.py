"""Prometheus metrics of managed certificates."""
import logging
import threading
from typing import Iterable

from prometheus_client import CollectorRegistry
from prometheus_client import Counter
from prometheus_client import Gauge
from prometheus_client import generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from vault_cert_manager._internal.status import CertStatus

logger = logging.getLogger(__name__)

CONTENT_TYPE = CONTENT_TYPE_LATEST


class Collector:
    """Owns the metrics of one process in a dedicated registry."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        self.last_renewed = Gauge(
            'managed_cert_last_renewed_timestamp_seconds',
            'Unix time the certificate was last issued by this process',
            ['name'], registry=self.registry)
        self.not_before = Gauge(
            'managed_cert_not_before_timestamp_seconds',
            'Start of the validity period of the certificate on disk',
            ['name'], registry=self.registry)
        self.not_after = Gauge(
            'managed_cert_not_after_timestamp_seconds',
            'End of the validity period of the certificate on disk',
            ['name'], registry=self.registry)
        self.renewals = Counter(
            'managed_cert_renewals',
            'Certificate issuance attempts',
            ['name', 'status'], registry=self.registry)
        self.fingerprint = Gauge(
            'managed_cert_fingerprint_info',
            'Fingerprint of the certificate on disk and of the one served remotely',
            ['name', 'fingerprint', 'location'], registry=self.registry)
        self.out_of_sync = Gauge(
            'managed_cert_out_of_sync',
            '1 when the served certificate differs from the one on disk',
            ['name'], registry=self.registry)
        self._fingerprints: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def record_renewal(self, name: str, success: bool) -> None:
        """Count one issuance attempt."""
        self.renewals.labels(name=name, status='success' if success else 'failure').inc()

    def update(self, statuses: Iterable[CertStatus]) -> None:
        """Refresh the gauges from current certificate statuses."""
        with self._lock:
            for status in statuses:
                if status.last_renewed is not None:
                    self.last_renewed.labels(name=status.name).set(
                        status.last_renewed.timestamp())
                if status.not_before is not None:
                    self.not_before.labels(name=status.name).set(status.not_before.timestamp())
                if status.not_after is not None:
                    self.not_after.labels(name=status.name).set(status.not_after.timestamp())
                self.out_of_sync.labels(name=status.name).set(1 if status.out_of_sync else 0)
                self._set_fingerprint(status.name, 'disk', status.fingerprint)
                self._set_fingerprint(status.name, 'remote', status.remote_fingerprint)

    def _set_fingerprint(self, name: str, location: str, fingerprint: str) -> None:
        previous = self._fingerprints.get((name, location))
        if previous == fingerprint:
            return
        if previous:
            self.fingerprint.remove(name, previous, location)
        if fingerprint:
            self.fingerprint.labels(name=name, fingerprint=fingerprint, location=location).set(1)
            self._fingerprints[(name, location)] = fingerprint
        else:
            self._fingerprints.pop((name, location), None)

    def exposition(self) -> bytes:
        """Metrics in the Prometheus text format."""
        return generate_latest(self.registry)
