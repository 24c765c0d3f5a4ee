"""Vault Cert Manager main entry point."""
import argparse
import logging
import signal
import threading
from typing import Any
from typing import Callable
from typing import Optional
from typing import Union

from vault_cert_manager import configuration
from vault_cert_manager._internal import aggregator
from vault_cert_manager._internal import cli
from vault_cert_manager._internal import log
from vault_cert_manager._internal.app import Application

logger = logging.getLogger(__name__)


def rotate(config: configuration.Config) -> None:
    """Rotate every certificate once.

    :raises .errors.Error: if any certificate failed to rotate

    """
    app = Application(config)
    try:
        app.force_rotate_all()
    finally:
        app.session.close()
    logger.info('Rotated %d certificates', len(config.certificates))


def run(config: configuration.Config) -> None:
    """Run the certificate manager until SIGINT or SIGTERM.

    SIGHUP forces the rotation of every certificate.

    """
    app = Application(config)

    def _on_hup() -> None:
        logger.info('Received SIGHUP, rotating every certificate')
        app.rotate_all_in_background()

    _install_signal_handlers(app.stop_event, _on_hup)
    app.start()
    logger.info('Managing %d certificates', len(config.certificates))
    try:
        _wait(app.stop_event)
    finally:
        app.stop()


def run_aggregator(args: argparse.Namespace) -> None:
    """Run the fleet aggregator until SIGINT or SIGTERM."""
    fleet = aggregator.FleetAggregator(
        aggregator.make_consul_client(args.consul_addr), args.service_name,
        rotate_timeout=args.timeout)
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)
    http_server = aggregator.make_aggregator_server(fleet, args.port)
    http_server.start()
    logger.info('Aggregating service %s from %s', args.service_name, args.consul_addr)
    try:
        _wait(stop_event)
    finally:
        http_server.shutdown_and_server_close()


def _wait(stop_event: threading.Event) -> None:
    while not stop_event.wait(1):
        pass


def _install_signal_handlers(stop_event: threading.Event,
                             on_hup: Optional[Callable[[], None]] = None) -> None:
    def _stop(signum: int, unused_frame: Any) -> None:
        logger.info('Received %s', signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    if on_hup is not None and hasattr(signal, 'SIGHUP'):
        signal.signal(signal.SIGHUP, lambda unused_signum, unused_frame: on_hup())


def main(cli_args: Optional[list[str]] = None) -> Optional[Union[str, int]]:
    """Run Vault Cert Manager.

    :param cli_args: command line to Vault Cert Manager, defaults to ``sys.argv[1:]``
    :type cli_args: `list` of `str`

    :returns: value for `sys.exit` about the exit status of Vault Cert Manager
    :rtype: `str` or `int` or `None`

    """
    log.pre_arg_parse_setup()
    args = cli.prepare_and_parse_args(cli_args)

    if args.aggregator:
        log.post_config_setup(configuration.LoggingConfig(), debug=args.debug)
        run_aggregator(args)
        return None

    config = configuration.load_config(args.config)
    log.post_config_setup(config.logging, debug=args.debug)

    if args.rotate:
        rotate(config)
    else:
        run(config)
    return None
