"""Vault Cert Manager constants."""
import datetime
import logging
from typing import Any
from typing import Dict

CLI_DEFAULTS: Dict[str, Any] = dict(  # noqa
    config_files=[
        '/etc/vault-cert-manager/cli.ini',
    ],
    config='/etc/vault-cert-manager/config.conf',
    rotate=False,
    aggregator=False,
    consul_addr='http://localhost:8500',
    service_name='vault-cert-manager',
    port=9102,
    timeout=120,
)
"""Defaults for CLI flags and `.NamespaceConfig` attributes."""

ENV_PREFIX = 'VCM_'
"""Prefix of environment variables understood by the command line parser."""

CONFIG_FILE_SUFFIXES = ('.conf', '.ini')
"""Suffixes of files read when the configuration path is a directory."""

DEFAULT_LOGGING_LEVEL = logging.INFO
"""Default logging level."""

QUIET_LOGGING_LEVEL = logging.WARNING
"""Logging level used before the configuration is read."""

LOGGING_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}
"""Names accepted for ``[logging] level``."""

LOGGING_FORMATS = ('text', 'json')
"""Names accepted for ``[logging] format``."""

# Vault
DEFAULT_PKI_MOUNT = 'pki'
DEFAULT_APPROLE_MOUNT = 'approle'
DEFAULT_GCP_MOUNT = 'gcp'
DEFAULT_TLS_MOUNT = 'cert'
GCP_AUTH_TYPES = ('gce', 'iam')
DEFAULT_GCP_JWT_EXP = datetime.timedelta(minutes=15)

VAULT_TIMEOUT = 30
"""Default timeout, in seconds, of requests sent to Vault."""

SESSION_REFRESH_INTERVAL = datetime.timedelta(minutes=45)
"""How often the Vault token is renewed or re-acquired."""

GCE_METADATA_URL = 'http://metadata.google.internal/computeMetadata/v1/'
GCE_METADATA_HEADERS = {'Metadata-Flavor': 'Google'}
GCE_IDENTITY_PATH = 'instance/service-accounts/default/identity'
GCE_METADATA_TIMEOUT = 10
GCP_JWT_AUDIENCE = 'vault'
GOOGLE_TOKEN_URI = 'https://oauth2.googleapis.com/token'
JWT_BEARER_GRANT_TYPE = 'urn:ietf:params:oauth:grant-type:jwt-bearer'

# Certificates
DEFAULT_CERT_TTL = datetime.timedelta(hours=24)
MAX_RENEWAL_JITTER = datetime.timedelta(hours=1)
"""Upper bound (exclusive) of the per-certificate renewal jitter."""

CERT_MODE = 0o644
KEY_MODE = 0o600
DIR_MODE = 0o755

PROCESS_INTERVAL = datetime.timedelta(minutes=1)
"""How often every managed certificate is checked for renewal."""

# Health checks
DEFAULT_PROBE_TIMEOUT = datetime.timedelta(seconds=5)

# Status
CRITICAL_DAYS = 7
EXPIRING_DAYS = 30

# Metrics
DEFAULT_METRICS_PORT = 9090
DEFAULT_METRICS_REFRESH = datetime.timedelta(seconds=10)

# Aggregator
PEER_STATUS_PATH = '/api/status'
PEER_ROTATE_PATH = '/api/rotate'
PEER_POLL_TIMEOUT = 5
