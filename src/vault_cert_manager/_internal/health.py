"""Compare certificates on disk with what live TLS services present."""
import contextlib
import logging
import select
import socket
import time
from typing import NamedTuple
from typing import Optional

from cryptography.hazmat.primitives.serialization import Encoding
from OpenSSL import SSL

from vault_cert_manager import crypto_util
from vault_cert_manager import errors
from vault_cert_manager import util
from vault_cert_manager._internal.renewal import ManagedCertificate

logger = logging.getLogger(__name__)


class CheckResult(NamedTuple):
    """Outcome of probing the endpoint of a managed certificate."""
    success: bool
    error: Optional[str] = None
    remote_fingerprint: str = ''


def out_of_sync(local_fingerprint: str, remote_fingerprint: str) -> bool:
    """Does the endpoint serve a different certificate than the one on disk?

    Unknown fingerprints on either side never count as a divergence.

    """
    return bool(local_fingerprint and remote_fingerprint
                and local_fingerprint != remote_fingerprint)


def probe_endpoint(host: str, port: int, timeout: float) -> str:
    """Fingerprint the certificate presented by a TLS endpoint.

    A plain TCP connection is made first so unreachable endpoints fail
    fast, then a TLS handshake is performed on it without any
    certificate verification. The server name is sent unless host is an
    IP address.

    :param str host: Host to connect to.
    :param int port: Port to connect to.
    :param float timeout: Timeout in seconds for the whole probe.

    :raises .errors.ProbeError: In case of any problems.

    :returns: sha256 fingerprint of the DER of the leaf certificate
    :rtype: str

    """
    deadline = time.monotonic() + timeout
    context = SSL.Context(SSL.TLS_CLIENT_METHOD)
    context.set_verify(SSL.VERIFY_NONE)

    logger.debug('Attempting to connect to %s:%d.', host, port)
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as error:
        raise errors.ProbeError(f'connecting to {host}:{port} failed: {error}')

    with contextlib.closing(sock):
        sock.setblocking(False)
        client_ssl = SSL.Connection(context, sock)
        client_ssl.set_connect_state()
        if not util.is_ipaddress(host):
            client_ssl.set_tlsext_host_name(host.encode('idna'))
        try:
            while True:
                try:
                    client_ssl.do_handshake()
                    break
                except SSL.WantReadError:
                    _wait(sock, deadline, write=False)
                except SSL.WantWriteError:
                    _wait(sock, deadline, write=True)
        except (SSL.Error, OSError) as error:
            raise errors.ProbeError(f'TLS handshake with {host}:{port} failed: {error}')

        cert = client_ssl.get_peer_certificate()
        with contextlib.suppress(SSL.Error, OSError):
            client_ssl.shutdown()

    if cert is None:
        raise errors.ProbeError(f'{host}:{port} presented no certificate')
    return crypto_util.fingerprint(cert.to_cryptography().public_bytes(Encoding.DER))


def _wait(sock: socket.socket, deadline: float, write: bool) -> None:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise errors.ProbeError('TLS handshake timed out')
    if write:
        _, ready, _ = select.select([], [sock], [], remaining)
    else:
        ready, _, _ = select.select([sock], [], [], remaining)
    if not ready:
        raise errors.ProbeError('TLS handshake timed out')


class SyncChecker:
    """Probes the health check endpoints of managed certificates."""

    def check(self, managed: ManagedCertificate) -> CheckResult:
        """Probe the endpoint configured for managed.

        Failures are reported in the result, never raised.

        :param .ManagedCertificate managed: certificate to check

        :rtype: CheckResult

        """
        health_check = managed.target.health_check
        if health_check is None:
            return CheckResult(success=True)
        try:
            host, port = util.parse_host_port(health_check.tcp)
            remote = probe_endpoint(host, port, health_check.timeout.total_seconds())
        except errors.Error as error:
            logger.debug('Health check of %s failed: %s', managed.name, error)
            return CheckResult(success=False, error=str(error))

        if out_of_sync(managed.fingerprint, remote):
            logger.warning('Certificate %s on disk differs from the one served at %s',
                           managed.name, health_check.tcp)
        return CheckResult(success=True, remote_fingerprint=remote)
