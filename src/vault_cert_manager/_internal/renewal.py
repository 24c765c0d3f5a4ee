"""Functionality for issuing and renewing managed certificates."""
import datetime
import logging
import random
import traceback
from typing import Any
from typing import Optional

from cryptography import x509

from vault_cert_manager import crypto_util
from vault_cert_manager import errors
from vault_cert_manager._internal import constants
from vault_cert_manager._internal import hooks
from vault_cert_manager._internal import storage
from vault_cert_manager._internal.session import BackendSession
from vault_cert_manager.configuration import CertificateTarget

logger = logging.getLogger(__name__)


class ManagedCertificate:
    """Runtime state of a registered `.CertificateTarget`.

    :ivar .CertificateTarget target: desired state
    :ivar datetime.datetime last_renewed: when material was last issued
        by this process
    :ivar datetime.datetime next_renewal: when renewal becomes due
    :ivar cryptography.x509.Certificate certificate: current leaf
        certificate, `None` until one is found on disk or issued
    :ivar str fingerprint: sha256 of the DER of `certificate`
    :ivar datetime.timedelta renewal_jitter: fixed per-target offset
        pulled from the renewal deadline

    """
    def __init__(self, target: CertificateTarget,
                 renewal_jitter: datetime.timedelta) -> None:
        self.target = target
        self.renewal_jitter = renewal_jitter
        self.last_renewed: Optional[datetime.datetime] = None
        self.next_renewal: Optional[datetime.datetime] = None
        self.certificate: Optional[x509.Certificate] = None
        self.fingerprint = ''

    @property
    def name(self) -> str:
        """Name of the target."""
        return self.target.name

    def update(self, parsed: storage.ParsedCertificate) -> None:
        """Record the certificate currently on disk."""
        self.certificate = parsed.certificate
        self.fingerprint = parsed.fingerprint
        self.next_renewal = renewal_time(parsed.certificate, self.target.ttl,
                                         self.renewal_jitter)


def renewal_time(cert: x509.Certificate, ttl: datetime.timedelta,
                 jitter: datetime.timedelta) -> datetime.datetime:
    """When does cert become due for renewal?

    Renewal happens when a third of the requested lifetime remains,
    moved earlier by the jitter of the target.

    :rtype: :class:`datetime.datetime`

    """
    return crypto_util.notAfter(cert) - ttl / 3 - jitter


class LifecycleManager:
    """Keeps every registered certificate issued and fresh.

    The manager holds no lock of its own: callers serialize
    `process_all`, `force_rotate` and `force_rotate_all`.

    :param .BackendSession session: authenticated Vault session
    :param .CertificateStore store: certificate files
    :param collector: optional metrics collector, see
        `vault_cert_manager._internal.metrics.Collector`

    """
    def __init__(self, session: BackendSession,
                 store: Optional[storage.CertificateStore] = None,
                 collector: Optional[Any] = None) -> None:
        self.session = session
        self.store = store or storage.CertificateStore()
        self.collector = collector
        self._managed: dict[str, ManagedCertificate] = {}

    def register(self, target: CertificateTarget) -> ManagedCertificate:
        """Start managing target.

        :param .CertificateTarget target: certificate to manage

        :returns: the runtime state of target
        :rtype: ManagedCertificate

        :raises .errors.DuplicateTargetError: if the name is taken

        """
        if target.name in self._managed:
            raise errors.DuplicateTargetError(
                f'certificate {target.name} is already registered')
        jitter = datetime.timedelta(
            seconds=random.random() * constants.MAX_RENEWAL_JITTER.total_seconds())
        managed = ManagedCertificate(target, jitter)
        try:
            managed.update(self.store.load(target))
        except errors.CertStorageError as error:
            logger.debug('No usable certificate for %s yet: %s', target.name, error)
        self._managed[target.name] = managed
        logger.debug('Registered certificate %s with renewal jitter %s', target.name, jitter)
        return managed

    def get(self, name: str) -> ManagedCertificate:
        """Look up a registered certificate.

        :raises .errors.UnknownTargetError: if name is not registered

        """
        try:
            return self._managed[name]
        except KeyError:
            raise errors.UnknownTargetError(f'no certificate named {name}')

    @property
    def managed_certificates(self) -> list[ManagedCertificate]:
        """Registered certificates, in registration order."""
        return list(self._managed.values())

    def should_renew(self, managed: ManagedCertificate,
                     now: Optional[datetime.datetime] = None) -> bool:
        """Return true if managed is due for renewal.

        A target without a certificate is never due, it is issued by the
        missing material check of `process_all` instead.

        """
        if managed.certificate is None:
            return False
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return now >= renewal_time(managed.certificate, managed.target.ttl,
                                   managed.renewal_jitter)

    def process_all(self) -> None:
        """Renew due certificates and issue missing ones.

        Every target is handled independently: a failure is logged and
        the next target is processed. Nothing is raised for per-target
        failures.

        """
        for managed in self.managed_certificates:
            name = managed.name
            try:
                if self.should_renew(managed):
                    logger.info('Certificate %s is due for renewal, renewing...', name)
                    self._issue(managed)
            except Exception as e:  # pylint: disable=broad-except
                logger.error('Failed to renew certificate %s with error: %s', name, e)
                logger.debug('Traceback was:\n%s', traceback.format_exc())
                continue

            try:
                if self._needs_issue(managed):
                    logger.info('Certificate %s is missing on disk, issuing...', name)
                    self._issue(managed)
            except Exception as e:  # pylint: disable=broad-except
                logger.error('Failed to issue certificate %s with error: %s', name, e)
                logger.debug('Traceback was:\n%s', traceback.format_exc())

    def force_rotate(self, name: str) -> ManagedCertificate:
        """Issue a new certificate for name regardless of its expiry.

        :raises .errors.UnknownTargetError: if name is not registered
        :raises .errors.Error: if issuing or writing failed

        """
        managed = self.get(name)
        logger.info('Forcing rotation of certificate %s', name)
        self._issue(managed)
        return managed

    def force_rotate_all(self) -> None:
        """Issue a new certificate for every target.

        Every target is attempted even if some fail.

        :raises .errors.Error: naming the targets that failed

        """
        failed = []
        for managed in self.managed_certificates:
            try:
                self.force_rotate(managed.name)
            except Exception as e:  # pylint: disable=broad-except
                logger.error('Failed to rotate certificate %s with error: %s', managed.name, e)
                logger.debug('Traceback was:\n%s', traceback.format_exc())
                failed.append(managed.name)
        if failed:
            raise errors.Error('{0} of {1} certificates failed to rotate: {2}'.format(
                len(failed), len(self._managed), ', '.join(failed)))

    def _needs_issue(self, managed: ManagedCertificate) -> bool:
        if not self.store.exists(managed.target):
            return True
        if managed.certificate is None:
            # present on disk but never parsed, e.g. written by an operator
            try:
                managed.update(self.store.load(managed.target))
            except errors.CertStorageError as error:
                logger.warning('Existing certificate %s is unusable: %s', managed.name, error)
                return True
        return False

    def _issue(self, managed: ManagedCertificate) -> None:
        target = managed.target
        try:
            material = self.session.issue_certificate(target)
            self.store.write(target, material)
            parsed = self.store.load(target)
        except errors.Error:
            self._record_renewal(target.name, False)
            raise

        managed.update(parsed)
        managed.last_renewed = datetime.datetime.now(datetime.timezone.utc)
        self._record_renewal(target.name, True)
        logger.info('Certificate %s issued, valid until %s, next renewal at %s',
                    target.name, crypto_util.notAfter(parsed.certificate),
                    managed.next_renewal)

        try:
            hooks.run_on_change(target)
        except errors.HookError as error:
            logger.warning('%s', error)

    def _record_renewal(self, name: str, success: bool) -> None:
        if self.collector is not None:
            self.collector.record_renewal(name, success)
