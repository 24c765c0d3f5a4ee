"""Vault Cert Manager configuration.

The configuration is read with `configobj` from a single file or from
every ``*.conf``/``*.ini`` file of a directory. In the latter case one
file (the first, in sorted order, with a Vault address or an
authentication section) provides the ``[vault]``, ``[prometheus]`` and
``[logging]`` sections while the others only contribute
``[certificates]``.

"""
import datetime
import logging
import os
from typing import Any
from typing import NamedTuple
from typing import Optional
from typing import Union

import configobj
import parsedatetime

from vault_cert_manager import errors
from vault_cert_manager import util
from vault_cert_manager._internal import constants

logger = logging.getLogger(__name__)

_EPOCH = datetime.datetime(2000, 1, 1, tzinfo=datetime.timezone.utc)


class TokenAuth(NamedTuple):
    """Static Vault token."""
    value: str


class AppRoleAuth(NamedTuple):
    """AppRole credentials. Exactly one secret source is set."""
    role_id: str
    secret_id: Optional[str] = None
    secret_id_file: Optional[str] = None
    mount_path: str = constants.DEFAULT_APPROLE_MOUNT


class GCPAuth(NamedTuple):
    """Google Cloud identity, either the GCE metadata server or an IAM key."""
    type: str
    role: str
    mount_path: str = constants.DEFAULT_GCP_MOUNT
    service_account: Optional[str] = None
    credentials_file: Optional[str] = None
    jwt_exp: datetime.timedelta = constants.DEFAULT_GCP_JWT_EXP


class TLSAuth(NamedTuple):
    """Client certificate used for the Vault ``cert`` auth method."""
    cert_file: str
    key_file: str
    mount_path: str = constants.DEFAULT_TLS_MOUNT
    name: Optional[str] = None


class AuthConfig(NamedTuple):
    """Authentication settings, exactly one variant is populated."""
    token: Optional[TokenAuth] = None
    approle: Optional[AppRoleAuth] = None
    gcp: Optional[GCPAuth] = None
    tls: Optional[TLSAuth] = None

    @property
    def methods(self) -> list[str]:
        """Names of the populated variants."""
        return [name for name in self._fields if getattr(self, name) is not None]

    @property
    def method(self) -> str:
        """Name of the single populated variant.

        :raises .errors.ConfigurationError: if not exactly one variant is set

        """
        methods = self.methods
        if len(methods) != 1:
            raise errors.ConfigurationError(
                'exactly one authentication method must be configured, found {0}'.format(
                    ', '.join(methods) or 'none'))
        return methods[0]


class HealthCheck(NamedTuple):
    """Live TLS endpoint serving a managed certificate."""
    tcp: str
    timeout: datetime.timedelta = constants.DEFAULT_PROBE_TIMEOUT


class CertificateTarget(NamedTuple):
    """Desired state of one managed certificate."""
    name: str
    role: str
    common_name: str
    certificate: str
    key: str
    alt_names: tuple[str, ...] = ()
    ip_sans: tuple[str, ...] = ()
    ttl: datetime.timedelta = constants.DEFAULT_CERT_TTL
    owner: Optional[str] = None
    group: Optional[str] = None
    on_change: Optional[str] = None
    health_check: Optional[HealthCheck] = None

    @property
    def is_combined(self) -> bool:
        """Certificate, chain and key live in a single file."""
        return self.certificate == self.key


class VaultConfig(NamedTuple):
    """Vault connection settings."""
    address: str
    auth: AuthConfig
    pki_mount: str = constants.DEFAULT_PKI_MOUNT
    verify: Union[bool, str] = True
    timeout: float = constants.VAULT_TIMEOUT


class MetricsConfig(NamedTuple):
    """Status server and Prometheus settings."""
    port: int = constants.DEFAULT_METRICS_PORT
    refresh_interval: datetime.timedelta = constants.DEFAULT_METRICS_REFRESH


class LoggingConfig(NamedTuple):
    """Logging settings."""
    level: str = 'info'
    format: str = 'text'


class Config(NamedTuple):
    """Complete, validated configuration."""
    vault: VaultConfig
    certificates: list[CertificateTarget]
    prometheus: MetricsConfig = MetricsConfig()
    logging: LoggingConfig = LoggingConfig()


def parse_duration(value: Any,
                   textparser: parsedatetime.Calendar = parsedatetime.Calendar()
                   ) -> datetime.timedelta:
    """Parse a time interval.

    The interval can be in the English-language format understood by
    parsedatetime, e.g., '24 hours', '90 minutes' or a sequence like
    '1 day 12 hours'. If an integer is found with no associated unit, it
    is interpreted as a number of seconds.

    :param value: the time interval to parse
    :type value: `str` or `int`

    :returns: the interpretation of the time interval
    :rtype: :class:`datetime.timedelta`

    :raises .errors.ConfigurationError: if value cannot be parsed

    """
    interval = str(value).strip()
    if interval.isdigit():
        return datetime.timedelta(seconds=int(interval))
    parsed, status = textparser.parseDT(interval, _EPOCH, tzinfo=datetime.timezone.utc)
    if not status:
        raise errors.ConfigurationError(f'invalid duration {value!r}')
    return parsed - _EPOCH


def load_config(path: str) -> Config:
    """Load and validate the configuration found at path.

    :param str path: configuration file or directory of configuration files

    :returns: the validated configuration
    :rtype: Config

    :raises .errors.ConfigurationError: if the configuration cannot be
        read or is invalid

    """
    if os.path.isdir(path):
        filenames = sorted(
            os.path.join(path, name) for name in os.listdir(path)
            if name.endswith(constants.CONFIG_FILE_SUFFIXES))
        if not filenames:
            raise errors.ConfigurationError(f'no configuration files found in {path}')
    else:
        filenames = [path]

    parsed = [(filename, _read_file(filename)) for filename in filenames]
    primary = next((item for item in parsed if _is_primary(item[1])), None)
    if primary is None:
        raise errors.ConfigurationError(
            f'no configuration file in {path} defines a Vault address or authentication')
    primary_name, primary_obj = primary
    logger.debug('Using %s as the primary configuration file', primary_name)

    certificates: list[CertificateTarget] = []
    seen: dict[str, str] = {}
    for filename, conf in parsed:
        for target in _parse_certificates(conf.get('certificates', {}), filename):
            if target.name in seen:
                raise errors.ConfigurationError(
                    'certificate {0} is defined in both {1} and {2}'.format(
                        target.name, seen[target.name], filename))
            seen[target.name] = filename
            certificates.append(target)

    return Config(
        vault=_parse_vault(_section(primary_obj, 'vault'), primary_name),
        certificates=certificates,
        prometheus=_parse_prometheus(_section(primary_obj, 'prometheus')),
        logging=_parse_logging(_section(primary_obj, 'logging')),
    )


def _read_file(filename: str) -> configobj.ConfigObj:
    try:
        return configobj.ConfigObj(
            filename, encoding='utf-8', default_encoding='utf-8', file_error=True)
    except (OSError, configobj.ConfigObjError) as error:
        raise errors.ConfigurationError(f'error reading {filename}: {error}')


def _is_primary(conf: configobj.ConfigObj) -> bool:
    vault = conf.get('vault')
    return isinstance(vault, dict) and ('address' in vault or 'auth' in vault)


def _section(parent: Any, name: str) -> configobj.Section:
    section = parent.get(name)
    if section is None:
        return configobj.ConfigObj()
    if not isinstance(section, configobj.Section):
        raise errors.ConfigurationError(f'{name} must be a section')
    return section


def _required(section: Any, key: str, where: str) -> str:
    value = section.get(key)
    if not value or not isinstance(value, str):
        raise errors.ConfigurationError(f'{where}: {key} is required')
    return value


def _as_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(',')
    return tuple(item.strip() for item in value if item.strip())


def _as_bool(section: configobj.Section, key: str, where: str) -> bool:
    try:
        return section.as_bool(key)
    except ValueError:
        raise errors.ConfigurationError(f'{where}: {key} must be a boolean')


def _as_int(section: configobj.Section, key: str, where: str) -> int:
    try:
        return section.as_int(key)
    except (ValueError, TypeError):
        raise errors.ConfigurationError(f'{where}: {key} must be an integer')


def _parse_vault(section: configobj.Section, filename: str) -> VaultConfig:
    where = f'{filename} [vault]'
    verify: Union[bool, str] = True
    if section.get('ca_cert'):
        verify = section['ca_cert']
    elif 'verify' in section:
        verify = _as_bool(section, 'verify', where)
    timeout = float(constants.VAULT_TIMEOUT)
    if 'timeout' in section:
        timeout = parse_duration(section['timeout']).total_seconds()
    return VaultConfig(
        address=_required(section, 'address', where).rstrip('/'),
        auth=_parse_auth(_section(section, 'auth'), where),
        pki_mount=section.get('pki_mount') or constants.DEFAULT_PKI_MOUNT,
        verify=verify,
        timeout=timeout,
    )


def _parse_auth(section: configobj.Section, where: str) -> AuthConfig:
    where += ' [[auth]]'
    token = approle = gcp = tls = None
    if 'token' in section:
        value = section['token']
        if isinstance(value, configobj.Section):
            value = value.get('value')
        token = TokenAuth(value=value or '')
    if 'approle' in section:
        approle = _parse_approle(_section(section, 'approle'), where + ' [[[approle]]]')
    if 'gcp' in section:
        gcp = _parse_gcp(_section(section, 'gcp'), where + ' [[[gcp]]]')
    if 'tls' in section:
        tls = _parse_tls(_section(section, 'tls'), where + ' [[[tls]]]')

    auth = AuthConfig(token=token, approle=approle, gcp=gcp, tls=tls)
    try:
        auth.method  # pylint: disable=pointless-statement
    except errors.ConfigurationError as error:
        raise errors.ConfigurationError(f'{where}: {error}')
    if token is not None and not token.value:
        raise errors.ConfigurationError(f'{where}: token must not be empty')
    return auth


def _parse_approle(section: configobj.Section, where: str) -> AppRoleAuth:
    secret_id = section.get('secret_id') or None
    secret_id_file = section.get('secret_id_file') or None
    if secret_id and secret_id_file:
        raise errors.ConfigurationError(
            f'{where}: secret_id and secret_id_file are mutually exclusive')
    if not secret_id and not secret_id_file:
        raise errors.ConfigurationError(
            f'{where}: one of secret_id or secret_id_file is required')
    return AppRoleAuth(
        role_id=_required(section, 'role_id', where),
        secret_id=secret_id,
        secret_id_file=secret_id_file,
        mount_path=section.get('mount_path') or constants.DEFAULT_APPROLE_MOUNT,
    )


def _parse_gcp(section: configobj.Section, where: str) -> GCPAuth:
    auth_type = _required(section, 'type', where)
    if auth_type not in constants.GCP_AUTH_TYPES:
        raise errors.ConfigurationError(
            '{0}: type must be one of {1}'.format(where, ', '.join(constants.GCP_AUTH_TYPES)))
    jwt_exp = constants.DEFAULT_GCP_JWT_EXP
    if section.get('jwt_exp'):
        jwt_exp = parse_duration(section['jwt_exp'])
    return GCPAuth(
        type=auth_type,
        role=_required(section, 'role', where),
        mount_path=section.get('mount_path') or constants.DEFAULT_GCP_MOUNT,
        service_account=section.get('service_account') or None,
        credentials_file=section.get('credentials_file') or None,
        jwt_exp=jwt_exp,
    )


def _parse_tls(section: configobj.Section, where: str) -> TLSAuth:
    return TLSAuth(
        cert_file=_required(section, 'cert_file', where),
        key_file=_required(section, 'key_file', where),
        mount_path=section.get('mount_path') or constants.DEFAULT_TLS_MOUNT,
        name=section.get('name') or None,
    )


def _parse_prometheus(section: configobj.Section) -> MetricsConfig:
    port = constants.DEFAULT_METRICS_PORT
    if 'port' in section:
        port = _as_int(section, 'port', '[prometheus]')
    refresh = constants.DEFAULT_METRICS_REFRESH
    if section.get('refresh_interval'):
        refresh = parse_duration(section['refresh_interval'])
    return MetricsConfig(port=port, refresh_interval=refresh)


def _parse_logging(section: configobj.Section) -> LoggingConfig:
    level = (section.get('level') or 'info').lower()
    if level not in constants.LOGGING_LEVELS:
        raise errors.ConfigurationError(f'[logging]: unknown level {level!r}')
    fmt = (section.get('format') or 'text').lower()
    if fmt not in constants.LOGGING_FORMATS:
        raise errors.ConfigurationError(f'[logging]: unknown format {fmt!r}')
    return LoggingConfig(level=level, format=fmt)


def _parse_certificates(section: Any, filename: str) -> list[CertificateTarget]:
    if not isinstance(section, configobj.Section):
        return []
    targets = []
    for name in section.sections:
        targets.append(_parse_certificate(name, section[name], f'{filename} [[{name}]]'))
    return targets


def _parse_certificate(name: str, section: configobj.Section, where: str) -> CertificateTarget:
    ip_sans = _as_list(section.get('ip_sans'))
    for address in ip_sans:
        if not util.is_ipaddress(address):
            logger.warning('%s: ignoring invalid IP SAN %s', where, address)
    ttl = constants.DEFAULT_CERT_TTL
    if section.get('ttl'):
        ttl = parse_duration(section['ttl'])
    if ttl <= datetime.timedelta(0):
        raise errors.ConfigurationError(f'{where}: ttl must be positive')

    health_check = None
    if 'health_check' in section:
        check = _section(section, 'health_check')
        timeout = constants.DEFAULT_PROBE_TIMEOUT
        if check.get('timeout'):
            timeout = parse_duration(check['timeout'])
        tcp = _required(check, 'tcp', where + ' [[[health_check]]]')
        try:
            util.parse_host_port(tcp)
        except errors.Error as error:
            raise errors.ConfigurationError(f'{where} [[[health_check]]]: {error}')
        health_check = HealthCheck(tcp=tcp, timeout=timeout)

    return CertificateTarget(
        name=name,
        role=_required(section, 'role', where),
        common_name=_required(section, 'common_name', where),
        certificate=_required(section, 'certificate', where),
        key=_required(section, 'key', where),
        alt_names=_as_list(section.get('alt_names')),
        ip_sans=ip_sans,
        ttl=ttl,
        owner=section.get('owner') or None,
        group=section.get('group') or None,
        on_change=section.get('on_change') or None,
        health_check=health_check,
    )
