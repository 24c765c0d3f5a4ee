"""Vault Cert Manager command line argument parsing."""
import argparse
from typing import Any
from typing import Optional

import configargparse

import vault_cert_manager
from vault_cert_manager._internal import constants


def flag_default(name: str) -> Any:
    """Default value for CLI flag."""
    return constants.CLI_DEFAULTS[name]


def make_parser() -> configargparse.ArgParser:
    """Build the command line parser.

    Every flag may also be set in an INI file given with ``--cli-ini``
    or through a ``VCM_`` prefixed environment variable, e.g.
    ``VCM_CONSUL_ADDR``.

    """
    parser = configargparse.ArgParser(
        prog='vault-cert-manager',
        description='Issue, renew and synchronize certificates from a Vault PKI backend.',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        args_for_setting_config_path=['--cli-ini'],
        config_arg_help_message='path to an INI file holding command line flags',
        default_config_files=flag_default('config_files'),
        auto_env_var_prefix=constants.ENV_PREFIX)

    parser.add_argument(
        '-c', '--config', default=flag_default('config'),
        help='configuration file, or directory of configuration files')
    parser.add_argument(
        '-v', '--version', action='version',
        version=f'%(prog)s {vault_cert_manager.__version__}',
        help='show program\'s version number and exit')
    parser.add_argument(
        '-r', '--rotate', action='store_true', default=flag_default('rotate'),
        help='rotate every certificate once and exit')
    parser.add_argument(
        '--debug', action='store_true', default=False,
        help='show tracebacks of fatal errors')

    fleet = parser.add_argument_group('aggregator')
    fleet.add_argument(
        '-a', '--aggregator', action='store_true', default=flag_default('aggregator'),
        help='run the fleet aggregator instead of the certificate manager')
    fleet.add_argument(
        '--consul-addr', default=flag_default('consul_addr'),
        help='Consul HTTP API address')
    fleet.add_argument(
        '--service-name', default=flag_default('service_name'),
        help='Consul service the certificate managers register under')
    fleet.add_argument(
        '-p', '--port', type=int, default=flag_default('port'),
        help='port the aggregator listens on')
    fleet.add_argument(
        '--timeout', type=int, default=flag_default('timeout'),
        help='seconds to wait for a forwarded rotation to complete')
    return parser


def prepare_and_parse_args(args: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse the command line.

    :param list args: command line arguments, defaults to ``sys.argv[1:]``

    :returns: parsed flags
    :rtype: argparse.Namespace

    """
    parser = make_parser()
    parsed = parser.parse_args(args)
    if parsed.timeout <= 0:
        parser.error('--timeout must be positive')
    if parsed.rotate and parsed.aggregator:
        parser.error('--rotate and --aggregator are mutually exclusive')
    return parsed
