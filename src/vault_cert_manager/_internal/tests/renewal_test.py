"""Tests for vault_cert_manager._internal.renewal."""
import datetime
import os
import unittest
from unittest import mock

import pytest

from vault_cert_manager import errors
from vault_cert_manager._internal import renewal
from vault_cert_manager._internal import storage
from vault_cert_manager.tests import util as test_util


def _now():
    return datetime.datetime.now(datetime.timezone.utc)


class RenewalTimeTest(unittest.TestCase):
    """Tests for vault_cert_manager._internal.renewal.renewal_time."""

    def test_third_of_ttl_before_expiry(self):
        not_after = datetime.datetime(2030, 1, 2, tzinfo=datetime.timezone.utc)
        cert, _ = test_util.make_cert(not_before=not_after - datetime.timedelta(days=1),
                                      not_after=not_after)
        assert renewal.renewal_time(cert, datetime.timedelta(hours=24),
                                    datetime.timedelta(0)) == \
            datetime.datetime(2030, 1, 1, 16, tzinfo=datetime.timezone.utc)
        assert renewal.renewal_time(cert, datetime.timedelta(hours=24),
                                    datetime.timedelta(minutes=30)) == \
            datetime.datetime(2030, 1, 1, 15, 30, tzinfo=datetime.timezone.utc)


class LifecycleManagerTest(test_util.TempDirTestCase):
    """Tests for vault_cert_manager._internal.renewal.LifecycleManager."""

    def setUp(self):
        super().setUp()
        self.session = mock.MagicMock()
        self.session.issue_certificate.side_effect = \
            lambda target: test_util.make_material(target.common_name)
        self.collector = mock.MagicMock()
        self.store = storage.CertificateStore()
        self.manager = renewal.LifecycleManager(self.session, self.store, self.collector)

        patcher = mock.patch('vault_cert_manager._internal.renewal.hooks.run_on_change')
        self.mock_hook = patcher.start()
        self.addCleanup(patcher.stop)

    def _target(self, name='web', **kwargs):
        return test_util.make_target(self.tempdir, name, **kwargs)

    def _write_expiring(self, target, remaining=datetime.timedelta(minutes=30)):
        now = _now()
        self.store.write(target, test_util.make_material(
            target.common_name, not_before=now - datetime.timedelta(hours=2),
            not_after=now + remaining))

    def test_register_duplicate(self):
        self.manager.register(self._target())
        with pytest.raises(errors.DuplicateTargetError):
            self.manager.register(self._target())

    @mock.patch('vault_cert_manager._internal.renewal.random.random')
    def test_register_jitter_below_an_hour(self, mock_random):
        mock_random.return_value = 0.999
        managed = self.manager.register(self._target())
        assert datetime.timedelta(0) <= managed.renewal_jitter < datetime.timedelta(hours=1)
        mock_random.return_value = 0.0
        assert self.manager.register(self._target('api')).renewal_jitter == \
            datetime.timedelta(0)

    def test_register_loads_existing(self):
        target = self._target()
        material = test_util.make_material(target.common_name)
        self.store.write(target, material)

        managed = self.manager.register(target)
        assert managed.certificate is not None
        assert managed.fingerprint == self.store.load(target).fingerprint
        assert managed.next_renewal is not None
        assert managed.last_renewed is None

    def test_register_without_files(self):
        managed = self.manager.register(self._target())
        assert managed.certificate is None
        assert managed.fingerprint == ''

    def test_get_unknown(self):
        with pytest.raises(errors.UnknownTargetError):
            self.manager.get('nope')

    def test_should_renew(self):
        target = self._target(ttl=datetime.timedelta(hours=3))
        self._write_expiring(target)
        managed = self.manager.register(target)
        # notAfter - 1h - jitter is already in the past
        assert self.manager.should_renew(managed)

    def test_should_not_renew_fresh(self):
        target = self._target(ttl=datetime.timedelta(hours=24))
        self.store.write(target, test_util.make_material(
            target.common_name, lifetime=datetime.timedelta(hours=24)))
        managed = self.manager.register(target)
        assert not self.manager.should_renew(managed)

    def test_should_renew_with_jitter(self):
        target = self._target(ttl=datetime.timedelta(hours=24))
        not_after = datetime.datetime(2030, 1, 2, tzinfo=datetime.timezone.utc)
        managed = renewal.ManagedCertificate(target, datetime.timedelta(minutes=30))
        managed.certificate, _ = test_util.make_cert(
            not_before=not_after - datetime.timedelta(days=1), not_after=not_after)

        deadline = datetime.datetime(2030, 1, 1, 15, 30, tzinfo=datetime.timezone.utc)
        assert not self.manager.should_renew(
            managed, now=deadline - datetime.timedelta(seconds=1))
        assert self.manager.should_renew(managed, now=deadline)

    def test_should_not_renew_without_certificate(self):
        managed = self.manager.register(self._target())
        assert not self.manager.should_renew(managed)

    def test_process_all_first_run(self):
        web = self.manager.register(self._target('web'))
        api = self.manager.register(self._target('api', combined=True))

        self.manager.process_all()

        assert self.session.issue_certificate.call_count == 2
        for managed in (web, api):
            assert self.store.exists(managed.target)
            assert managed.fingerprint == self.store.load(managed.target).fingerprint
            assert managed.last_renewed is not None
            assert managed.next_renewal is not None
        self.collector.record_renewal.assert_any_call('web', True)
        self.collector.record_renewal.assert_any_call('api', True)
        assert self.mock_hook.call_count == 2

    def test_process_all_idempotent(self):
        self.manager.register(self._target())
        self.manager.process_all()
        self.manager.process_all()
        assert self.session.issue_certificate.call_count == 1

    def test_process_all_renews_due(self):
        target = self._target(ttl=datetime.timedelta(hours=3))
        self._write_expiring(target)
        managed = self.manager.register(target)
        old_fingerprint = managed.fingerprint

        self.manager.process_all()

        assert self.session.issue_certificate.call_count == 1
        assert managed.fingerprint != old_fingerprint
        assert managed.fingerprint == self.store.load(target).fingerprint
        assert not self.manager.should_renew(managed)

    def test_process_all_reissues_unparseable(self):
        target = self._target()
        os.makedirs(os.path.dirname(target.certificate))
        for path in (target.certificate, target.key):
            with open(path, 'w') as f:
                f.write('garbage\n')
        managed = self.manager.register(target)
        assert managed.certificate is None

        self.manager.process_all()

        assert self.session.issue_certificate.call_count == 1
        assert managed.certificate is not None

    def test_process_all_adopts_late_files(self):
        target = self._target()
        managed = self.manager.register(target)
        self.store.write(target, test_util.make_material(target.common_name))

        self.manager.process_all()

        assert not self.session.issue_certificate.called
        assert managed.fingerprint == self.store.load(target).fingerprint

    def test_process_all_failed_renewal_skips_missing_check(self):
        target = self._target(ttl=datetime.timedelta(hours=3))
        self._write_expiring(target)
        self.manager.register(target)
        os.remove(target.key)
        self.session.issue_certificate.side_effect = errors.IssueError('denied')

        self.manager.process_all()

        assert self.session.issue_certificate.call_count == 1
        self.collector.record_renewal.assert_called_once_with('web', False)

    def test_process_all_continues_after_failure(self):
        def issue(target):
            if target.name == 'bad':
                raise errors.IssueError('role not found')
            return test_util.make_material(target.common_name)
        self.session.issue_certificate.side_effect = issue
        bad = self.manager.register(self._target('bad'))
        good = self.manager.register(self._target('good'))

        with mock.patch('vault_cert_manager._internal.renewal.logger') as mock_logger:
            self.manager.process_all()

        assert mock_logger.error.called
        assert bad.certificate is None
        assert good.certificate is not None
        self.collector.record_renewal.assert_any_call('bad', False)
        self.collector.record_renewal.assert_any_call('good', True)

    def test_force_rotate(self):
        managed = self.manager.register(self._target())
        self.manager.process_all()
        first = managed.fingerprint

        assert self.manager.force_rotate('web') is managed
        assert managed.fingerprint != first
        assert self.session.issue_certificate.call_count == 2

    def test_force_rotate_unknown(self):
        with pytest.raises(errors.UnknownTargetError):
            self.manager.force_rotate('nope')
        assert not self.session.issue_certificate.called

    def test_force_rotate_write_failure(self):
        target = self._target()
        self.manager.register(target)
        with mock.patch.object(self.store, 'write',
                               side_effect=errors.CertStorageError('disk full')):
            with pytest.raises(errors.CertStorageError):
                self.manager.force_rotate('web')
        self.collector.record_renewal.assert_called_once_with('web', False)
        assert not self.mock_hook.called

    def test_force_rotate_all(self):
        for name in ('a', 'b', 'c'):
            self.manager.register(self._target(name))
        self.manager.force_rotate_all()
        assert self.session.issue_certificate.call_count == 3

    def test_force_rotate_all_reports_failures(self):
        def issue(target):
            if target.name in ('a', 'c'):
                raise errors.IssueError('denied')
            return test_util.make_material(target.common_name)
        self.session.issue_certificate.side_effect = issue
        for name in ('a', 'b', 'c'):
            self.manager.register(self._target(name))

        with pytest.raises(errors.Error, match='2 of 3 certificates failed to rotate: a, c'):
            self.manager.force_rotate_all()
        assert self.manager.get('b').certificate is not None

    def test_hook_failure_is_a_warning(self):
        self.mock_hook.side_effect = errors.HookError('exited with status 1')
        managed = self.manager.register(self._target(on_change='false'))

        with mock.patch('vault_cert_manager._internal.renewal.logger') as mock_logger:
            self.manager.process_all()

        assert managed.certificate is not None
        assert mock_logger.warning.called
        assert not mock_logger.error.called
        self.collector.record_renewal.assert_called_once_with('web', True)

    def test_without_collector(self):
        manager = renewal.LifecycleManager(self.session, self.store)
        manager.register(self._target())
        manager.process_all()
        assert self.session.issue_certificate.call_count == 1


if __name__ == "__main__":
    unittest.main()  # pragma: no cover
