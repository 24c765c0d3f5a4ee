"""Status records of managed certificates."""
import datetime
from typing import Any
from typing import Iterable
from typing import NamedTuple
from typing import Optional

import pyrfc3339

from vault_cert_manager import crypto_util
from vault_cert_manager._internal import constants
from vault_cert_manager._internal.health import CheckResult
from vault_cert_manager._internal.health import out_of_sync
from vault_cert_manager._internal.renewal import ManagedCertificate

CRITICAL = 'critical'
EXPIRING = 'expiring'
HEALTHY = 'healthy'
UNKNOWN = 'unknown'


class CertStatus(NamedTuple):
    """Point in time view of one managed certificate."""
    name: str
    common_name: str
    not_before: Optional[datetime.datetime]
    not_after: Optional[datetime.datetime]
    days_left: Optional[int]
    fingerprint: str
    remote_fingerprint: str
    out_of_sync: bool
    last_renewed: Optional[datetime.datetime]
    next_renewal: Optional[datetime.datetime]
    health_error: Optional[str]
    status: str

    def to_json(self) -> dict[str, Any]:
        """JSON serializable form, times in RFC 3339."""
        jobj = self._asdict()
        for field in ('not_before', 'not_after', 'last_renewed', 'next_renewal'):
            jobj[field] = _timestamp(jobj[field])
        return jobj


def status_label(days_left: Optional[int]) -> str:
    """Classify a certificate by its remaining whole days."""
    if days_left is None:
        return UNKNOWN
    if days_left <= constants.CRITICAL_DAYS:
        return CRITICAL
    if days_left <= constants.EXPIRING_DAYS:
        return EXPIRING
    return HEALTHY


def build_status(managed: ManagedCertificate, check: Optional[CheckResult] = None,
                 now: Optional[datetime.datetime] = None) -> CertStatus:
    """Summarize managed and the result of its last health check."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    check = check or CheckResult(success=True)
    not_before = not_after = None
    days_left = None
    if managed.certificate is not None:
        not_before = crypto_util.notBefore(managed.certificate)
        not_after = crypto_util.notAfter(managed.certificate)
        # whole days, truncated towards zero
        days_left = int((not_after - now).total_seconds() / 86400)

    return CertStatus(
        name=managed.name,
        common_name=managed.target.common_name,
        not_before=not_before,
        not_after=not_after,
        days_left=days_left,
        fingerprint=managed.fingerprint,
        remote_fingerprint=check.remote_fingerprint,
        out_of_sync=out_of_sync(managed.fingerprint, check.remote_fingerprint),
        last_renewed=managed.last_renewed,
        next_renewal=managed.next_renewal,
        health_error=check.error,
        status=status_label(days_left),
    )


def build_statuses(managed_certificates: Iterable[ManagedCertificate],
                   checks: Optional[dict[str, CheckResult]] = None,
                   now: Optional[datetime.datetime] = None) -> list[CertStatus]:
    """Status of every certificate, keeping the given order."""
    checks = checks or {}
    return [build_status(managed, checks.get(managed.name), now)
            for managed in managed_certificates]


def _timestamp(value: Optional[datetime.datetime]) -> Optional[str]:
    if value is None:
        return None
    return pyrfc3339.generate(value, accept_naive=False)
