"""Facilities for running on-change hooks."""
import logging
import os
import subprocess
from typing import Optional

from vault_cert_manager import errors
from vault_cert_manager.configuration import CertificateTarget

logger = logging.getLogger(__name__)


def run_on_change(target: CertificateTarget) -> None:
    """Run the on-change command of target, if any.

    The command is run by the standard shell with the following
    variables added to the environment:

    - ``RENEWED_CERT_NAME``: name of the certificate
    - ``RENEWED_CERT_PATH``: certificate file
    - ``RENEWED_KEY_PATH``: private key file
    - ``RENEWED_DOMAINS``: space separated common name and alt names

    :param .CertificateTarget target: certificate that was just written

    :raises .errors.HookError: if the command could not be run or
        exited with a nonzero status

    """
    if not target.on_change:
        return
    env = {
        'RENEWED_CERT_NAME': target.name,
        'RENEWED_CERT_PATH': target.certificate,
        'RENEWED_KEY_PATH': target.key,
        'RENEWED_DOMAINS': ' '.join((target.common_name,) + tuple(target.alt_names)),
    }
    returncode, err, out = execute_command_status(
        f'on-change hook for {target.name}', target.on_change, extra_env=env)
    if out:
        logger.info('Output from on-change hook for %s:\n%s', target.name, out.rstrip())
    if returncode != 0:
        raise errors.HookError(
            'on-change hook for {0} exited with status {1}{2}'.format(
                target.name, returncode, f': {err.strip()}' if err.strip() else ''))
    if err:
        logger.warning('Error output from on-change hook for %s:\n%s', target.name, err.rstrip())


def execute_command_status(cmd_name: str, shell_cmd: str,
                           extra_env: Optional[dict[str, str]] = None) -> tuple[int, str, str]:
    """Run a command with the standard shell, ``subprocess.run(shell=True)``.

    :param str cmd_name: the user facing name of the hook being run
    :param str shell_cmd: shell command to execute
    :param dict extra_env: variables added to the inherited environment

    :returns: `tuple` (`int` returncode, `str` stderr, `str` stdout)

    :raises .errors.HookError: if the shell could not be started

    """
    logger.info("Running %s command: %s", cmd_name, shell_cmd)
    env = dict(os.environ)
    env.update(extra_env or {})
    try:
        proc = subprocess.run(shell_cmd, shell=True, stdout=subprocess.PIPE,
                              stderr=subprocess.PIPE, universal_newlines=True,
                              check=False, env=env)
    except OSError as error:
        raise errors.HookError(f'unable to run {cmd_name}: {error}')
    return proc.returncode, proc.stderr, proc.stdout
