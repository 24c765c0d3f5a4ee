"""Tests for vault_cert_manager._internal.main."""
import os
import signal
import threading
import unittest
from unittest import mock

import pytest

from vault_cert_manager import errors
from vault_cert_manager._internal import main
from vault_cert_manager.tests import util as test_util

CONFIG = """
[vault]
address = https://vault:8200
    [[auth]]
    token = s.static

[logging]
level = warning

[certificates]
    [[web]]
    role = web-server
    common_name = web.example.com
    certificate = {0}/web.pem
    key = {0}/web.key
"""


class MainTest(test_util.TempDirTestCase):
    """Tests for vault_cert_manager._internal.main.main."""

    def setUp(self):
        super().setUp()
        self.config_path = os.path.join(self.tempdir, 'config.conf')
        with open(self.config_path, 'w') as f:
            f.write(CONFIG.format(self.tempdir))
        for name in ('log', 'Application', '_install_signal_handlers'):
            patcher = mock.patch(f'vault_cert_manager._internal.main.{name}')
            setattr(self, 'mock_' + name.strip('_'), patcher.start())
            self.addCleanup(patcher.stop)
        patcher = mock.patch.dict(os.environ, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_rotate(self):
        assert main.main(['-c', self.config_path, '--rotate']) is None

        config = self.mock_Application.call_args[0][0]
        assert [target.name for target in config.certificates] == ['web']
        app = self.mock_Application.return_value
        app.force_rotate_all.assert_called_once_with()
        app.session.close.assert_called_once_with()
        self.mock_log.post_config_setup.assert_called_once_with(config.logging, debug=False)

    def test_rotate_failure(self):
        app = self.mock_Application.return_value
        app.force_rotate_all.side_effect = errors.Error('1 of 1 certificates failed')
        with pytest.raises(errors.Error):
            main.main(['-c', self.config_path, '--rotate'])
        app.session.close.assert_called_once_with()

    def test_run(self):
        app = self.mock_Application.return_value
        app.stop_event = threading.Event()
        app.stop_event.set()

        main.main(['-c', self.config_path, '--debug'])

        app.start.assert_called_once_with()
        app.stop.assert_called_once_with()
        stop_event, on_hup = self.mock_install_signal_handlers.call_args[0]
        assert stop_event is app.stop_event
        on_hup()
        app.rotate_all_in_background.assert_called_once_with()
        config = self.mock_Application.call_args[0][0]
        self.mock_log.post_config_setup.assert_called_once_with(config.logging, debug=True)

    def test_invalid_config(self):
        with open(self.config_path, 'w') as f:
            f.write('[vault]\naddress = https://vault:8200\n')
        with pytest.raises(errors.ConfigurationError):
            main.main(['-c', self.config_path])
        assert not self.mock_Application.called

    @mock.patch('vault_cert_manager._internal.main._wait')
    @mock.patch('vault_cert_manager._internal.main.aggregator')
    def test_aggregator(self, mock_aggregator, mock_wait):
        assert main.main(['-a', '--consul-addr', 'http://consul:8500', '-p', '9300',
                          '--timeout', '60', '--service-name', 'certs']) is None

        mock_aggregator.make_consul_client.assert_called_once_with('http://consul:8500')
        mock_aggregator.FleetAggregator.assert_called_once_with(
            mock_aggregator.make_consul_client.return_value, 'certs', rotate_timeout=60)
        mock_aggregator.make_aggregator_server.assert_called_once_with(
            mock_aggregator.FleetAggregator.return_value, 9300)
        http_server = mock_aggregator.make_aggregator_server.return_value
        http_server.start.assert_called_once_with()
        http_server.shutdown_and_server_close.assert_called_once_with()
        assert mock_wait.called
        assert not self.mock_Application.called


class InstallSignalHandlersTest(unittest.TestCase):
    """Tests for vault_cert_manager._internal.main._install_signal_handlers."""

    @mock.patch('vault_cert_manager._internal.main.signal.signal')
    def test_handlers(self, mock_signal):
        stop_event = threading.Event()
        on_hup = mock.MagicMock()
        main._install_signal_handlers(stop_event, on_hup)  # pylint: disable=protected-access
        handlers = {call[0][0]: call[0][1] for call in mock_signal.call_args_list}

        handlers[signal.SIGHUP](signal.SIGHUP, None)
        on_hup.assert_called_once_with()
        assert not stop_event.is_set()

        handlers[signal.SIGTERM](signal.SIGTERM, None)
        assert stop_event.is_set()

    @mock.patch('vault_cert_manager._internal.main.signal.signal')
    def test_without_hup(self, mock_signal):
        main._install_signal_handlers(threading.Event())  # pylint: disable=protected-access
        registered = [call[0][0] for call in mock_signal.call_args_list]
        assert registered == [signal.SIGINT, signal.SIGTERM]


if __name__ == "__main__":
    unittest.main()  # pragma: no cover
