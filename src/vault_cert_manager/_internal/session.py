"""Authenticated Vault session."""
import datetime
import logging
import threading
from typing import NamedTuple
from typing import Optional

import requests

import vault_cert_manager
from vault_cert_manager import errors
from vault_cert_manager import util
from vault_cert_manager._internal import auth
from vault_cert_manager._internal import constants
from vault_cert_manager._internal import lock
from vault_cert_manager._internal import network as network_lib
from vault_cert_manager.configuration import CertificateTarget
from vault_cert_manager.configuration import VaultConfig

logger = logging.getLogger(__name__)

UNAUTHENTICATED = 'unauthenticated'
AUTHENTICATED = 'authenticated'
REFRESHING = 'refreshing'
DEGRADED = 'degraded'


class IssuedMaterial(NamedTuple):
    """Certificate material returned by the PKI backend."""
    certificate: str
    private_key: str
    chain: str = ''
    serial_number: str = ''
    expiration: Optional[datetime.datetime] = None


class BackendSession:
    """Vault session shared by every managed certificate.

    The client token is obtained once at construction and refreshed
    periodically by a background thread. Issuance holds the session lock
    shared and refreshing holds it exclusively, so a request never
    observes a token being swapped out.

    :ivar str state: one of ``unauthenticated``, ``authenticated``,
        ``refreshing`` or ``degraded``
    :ivar datetime.datetime last_refreshed: when the token was last
        obtained or renewed

    """
    def __init__(self, config: VaultConfig,
                 network: Optional[network_lib.VaultNetwork] = None,
                 stop_event: Optional[threading.Event] = None) -> None:
        self.config = config
        self.network = network or network_lib.VaultNetwork(
            config.address, verify=config.verify, timeout=config.timeout,
            user_agent=f'vault-cert-manager/{vault_cert_manager.__version__}')
        self.state = UNAUTHENTICATED
        self.last_refreshed: Optional[datetime.datetime] = None
        self._lock = lock.ReadWriteLock()
        self._stop = stop_event or threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Failing to authenticate at startup is fatal.
        self._authenticate()

    def _authenticate(self) -> None:
        token = auth.obtain_credential(self.config.auth, self.network)
        self.network.token = token
        self.state = AUTHENTICATED
        self.last_refreshed = datetime.datetime.now(datetime.timezone.utc)
        logger.info('Authenticated to Vault at %s using %s',
                    self.config.address, self.config.auth.method)

    def issue_certificate(self, target: CertificateTarget) -> IssuedMaterial:
        """Ask the PKI backend for a new certificate.

        :param .CertificateTarget target: certificate to issue

        :returns: the issued certificate, key and chain
        :rtype: IssuedMaterial

        :raises .errors.IssueError: if the request failed or the response
            lacks certificate material

        """
        body = {
            'common_name': target.common_name,
            'format': 'pem',
            'ttl': '{0}s'.format(int(target.ttl.total_seconds())),
        }
        if target.alt_names:
            body['alt_names'] = ','.join(target.alt_names)
        ip_sans = [address for address in target.ip_sans if util.is_ipaddress(address)]
        if ip_sans:
            body['ip_sans'] = ','.join(ip_sans)

        path = '{0}/issue/{1}'.format(self.config.pki_mount, target.role)
        with self._lock.read_locked():
            try:
                response = self.network.post(path, body)
            except (errors.BackendResponseError, requests.exceptions.RequestException,
                    ValueError) as error:
                raise errors.IssueError(f'issuing {target.name} via {path} failed: {error}')

        data = response.get('data') or {}
        certificate = data.get('certificate')
        private_key = data.get('private_key')
        if not isinstance(certificate, str) or not certificate:
            raise errors.IssueError(f'{path} returned no certificate for {target.name}')
        if not isinstance(private_key, str) or not private_key:
            raise errors.IssueError(f'{path} returned no private key for {target.name}')

        chain = data.get('ca_chain')
        if isinstance(chain, list) and chain:
            chain = '\n'.join(chain)
        else:
            chain = data.get('issuing_ca') or ''

        expiration = None
        if data.get('expiration'):
            try:
                expiration = datetime.datetime.fromtimestamp(
                    int(data['expiration']), datetime.timezone.utc)
            except (TypeError, ValueError, OverflowError, OSError) as error:
                raise errors.IssueError(
                    f'{path} returned an invalid expiration for {target.name}: {error}')

        logger.debug('Vault issued certificate %s for %s',
                     data.get('serial_number', ''), target.name)
        return IssuedMaterial(
            certificate=certificate,
            private_key=private_key,
            chain=chain,
            serial_number=data.get('serial_number') or '',
            expiration=expiration,
        )

    def refresh(self) -> bool:
        """Renew the token, falling back to a fresh authentication.

        Failures are logged and leave the session ``degraded``; the next
        refresh tries again.

        :returns: whether a usable token is held afterwards
        :rtype: bool

        """
        with self._lock.write_locked():
            self.state = REFRESHING
            try:
                self.network.post('auth/token/renew-self', {})
            except (errors.BackendResponseError, requests.exceptions.RequestException,
                    ValueError) as error:
                logger.warning('Renewing Vault token failed, re-authenticating: %s', error)
            else:
                self.state = AUTHENTICATED
                self.last_refreshed = datetime.datetime.now(datetime.timezone.utc)
                logger.debug('Vault token renewed')
                return True

            try:
                self._authenticate()
            except errors.AuthError as error:
                self.state = DEGRADED
                logger.error('Re-authenticating to Vault failed: %s', error)
                return False
            return True

    def _refresh_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.refresh()
            except Exception:  # pylint: disable=broad-except
                logger.error('Unexpected error refreshing the Vault session', exc_info=True)

    def start(self, interval: datetime.timedelta = constants.SESSION_REFRESH_INTERVAL) -> None:
        """Start the background refresh thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._refresh_loop, args=(interval.total_seconds(),),
            name='vault-session-refresh', daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the refresh thread and wait for it to exit."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def close(self) -> None:
        """Stop refreshing and release the connection pool."""
        self.stop()
        self.network.close()
