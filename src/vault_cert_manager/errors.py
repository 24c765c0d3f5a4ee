"""Vault Cert Manager errors."""
from typing import Iterable
from typing import Optional


class Error(Exception):
    """Generic Vault Cert Manager error."""


class ConfigurationError(Error):
    """Configuration sanity error."""


# Backend errors
class AuthError(Error):
    """Authentication against the Vault backend failed.

    :ivar str kind: one of `CONFIG_INVALID`, `NETWORK_FAILURE` or
        `BACKEND_REJECTED`

    """
    CONFIG_INVALID = 'config-invalid'
    NETWORK_FAILURE = 'network-failure'
    BACKEND_REJECTED = 'backend-rejected'

    def __init__(self, kind: str, message: str) -> None:
        self.kind = kind
        super().__init__(message)


class BackendResponseError(Error):
    """Vault answered with a non-success status code.

    :ivar int status_code: HTTP status code of the response
    :ivar list messages: error messages returned by Vault

    """
    def __init__(self, status_code: int, messages: Optional[Iterable[str]] = None) -> None:
        self.status_code = status_code
        self.messages = list(messages or [])
        super().__init__()

    def __str__(self) -> str:
        if self.messages:
            return 'Vault returned {0}: {1}'.format(
                self.status_code, '; '.join(self.messages))
        return f'Vault returned {self.status_code}'


class IssueError(Error):
    """Certificate issuance failed."""


# Storage errors
class CertStorageError(Error):
    """Generic `.CertificateStore` error.

    :ivar str path: file the error relates to

    """
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class CertNotFoundError(CertStorageError):
    """Certificate file does not exist."""


class CertDecodeError(CertStorageError):
    """Certificate file does not hold a parsable PEM certificate."""


# Lifecycle errors
class DuplicateTargetError(Error):
    """A certificate target with the same name is already registered."""


class UnknownTargetError(Error):
    """No certificate target is registered under the given name."""


class HookError(Error):
    """On-change hook failed to run or exited with a nonzero status."""


class ProbeError(Error):
    """TLS endpoint could not be probed."""


# Fleet errors
class DiscoveryError(Error):
    """Peer discovery through Consul failed."""


class PeerNotFound(Error):
    """No peer with the requested node name was discovered."""


class ProxyError(Error):
    """Forwarding a request to a peer failed."""
