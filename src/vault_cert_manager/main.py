"""Vault Cert Manager main public entry point."""
import logging
import sys
from typing import Optional

from vault_cert_manager._internal import main as internal_main

logger = logging.getLogger(__name__)


def main(cli_args: Optional[list[str]] = None) -> None:
    """Run Vault Cert Manager and exit with its status.

    If the run returns a non-empty string, it is passed to sys.exit
    causing a non-zero status code and the string to be printed to
    stderr.

    :param cli_args: command line to Vault Cert Manager, defaults to ``sys.argv[1:]``
    :type cli_args: `list` of `str`

    """
    err_string = internal_main.main(cli_args)
    if err_string:
        logger.debug('Exiting with message %s', err_string)
    sys.exit(err_string)
