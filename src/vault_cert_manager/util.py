"""Utilities for all Vault Cert Manager."""
import errno
import logging
import os
import socket
import tempfile
from typing import Optional
from typing import Union

from vault_cert_manager import errors

logger = logging.getLogger(__name__)


def make_or_verify_dir(directory: str, mode: int = 0o755) -> None:
    """Make sure directory exists.

    Every directory created, missing parents included, gets mode
    regardless of the umask. Existing directories are left untouched.

    :param str directory: Path to a directory.
    :param int mode: Directory mode.

    :raises OSError: if invalid or inaccessible file names and
        paths, or other arguments that have the correct type,
        but are not accepted by the operating system.

    """
    missing = []
    path = os.path.abspath(directory)
    while not os.path.exists(path):
        missing.append(path)
        path = os.path.dirname(path)
    os.makedirs(directory, mode, exist_ok=True)
    for path in reversed(missing):
        os.chmod(path, mode)


def atomic_write(path: str, data: Union[str, bytes], chmod: int) -> None:
    """Replace the file at path with data.

    The content is first written to a temporary file in the same
    directory which is then renamed over path, so readers only ever
    observe the old or the new content.

    :param str path: Path to the destination file.
    :param data: New file content.
    :type data: `str` or `bytes`
    :param int chmod: Mode applied to the file regardless of umask.

    :raises OSError: if the file cannot be written.

    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(
        dir=directory, prefix='.' + os.path.basename(path) + '.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_path, chmod)
        os.replace(tmp_path, path)
    except OSError:
        safely_remove(tmp_path)
        raise


def safely_remove(path: str) -> None:
    """Remove a file that may not exist."""
    try:
        os.remove(path)
    except OSError as err:
        if err.errno != errno.ENOENT:
            raise


def is_ipaddress(address: str) -> bool:
    """Is given address string form of IP(v4 or v6) address?

    :param address: address to check
    :type address: `str`

    :returns: True if address is valid IP address, otherwise return False.
    :rtype: bool

    """
    try:
        socket.inet_pton(socket.AF_INET, address)
        # If this line runs it was ip address (ipv4)
        return True
    except OSError:
        # It wasn't an IPv4 address, so try ipv6
        try:
            socket.inet_pton(socket.AF_INET6, address)
            return True
        except OSError:
            return False


def parse_host_port(address: str) -> tuple[str, int]:
    """Split a ``host:port`` string.

    IPv6 hosts must be enclosed in brackets, e.g. ``[::1]:443``.

    :param str address: address to split

    :returns: host and port
    :rtype: tuple

    :raises .errors.Error: if address has no valid port

    """
    host, sep, port = address.rpartition(':')
    if not sep or not host:
        raise errors.Error(f'{address!r} is not of the form host:port')
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    try:
        port_number = int(port)
    except ValueError:
        raise errors.Error(f'{address!r} has an invalid port')
    if not 0 < port_number < 65536:
        raise errors.Error(f'{address!r} has an invalid port')
    return host, port_number


def resolve_owner(owner: Optional[str], group: Optional[str]) -> tuple[int, int]:
    """Resolve user and group names into numeric ids.

    Numeric strings are used as is. ``-1`` is returned for unset values
    so the result can be passed to `os.chown` directly.

    :param str owner: user name or uid
    :param str group: group name or gid

    :returns: uid and gid
    :rtype: tuple

    :raises KeyError: if a name is unknown to the system

    """
    # pwd and grp only exist on POSIX, the only platform chown applies to
    import grp
    import pwd

    uid = gid = -1
    if owner:
        uid = int(owner) if owner.isdigit() else pwd.getpwnam(owner).pw_uid
    if group:
        gid = int(group) if group.isdigit() else grp.getgrnam(group).gr_gid
    return uid, gid
