"""Certificate and key files on disk."""
import logging
import os
from typing import NamedTuple
from typing import Optional

from cryptography import x509

from vault_cert_manager import crypto_util
from vault_cert_manager import errors
from vault_cert_manager import util
from vault_cert_manager._internal import constants
from vault_cert_manager._internal.session import IssuedMaterial
from vault_cert_manager.configuration import CertificateTarget

logger = logging.getLogger(__name__)


class ParsedCertificate(NamedTuple):
    """Leaf certificate read back from disk."""
    certificate: x509.Certificate
    fingerprint: str


class CertificateStore:
    """Reads and writes the files of managed certificates.

    A target whose certificate and key paths are equal is *combined*:
    certificate, chain and private key share one file readable only by
    its owner. Otherwise the certificate (followed by the chain) is
    world readable and the key lives in its own private file.

    """

    def load(self, target: CertificateTarget) -> ParsedCertificate:
        """Parse the leaf certificate of target.

        Only the first PEM block is considered and it must be a
        certificate; a chain or key following it is ignored.

        :param .CertificateTarget target: certificate to read

        :returns: the parsed certificate and its fingerprint
        :rtype: ParsedCertificate

        :raises .errors.CertNotFoundError: if the file does not exist
        :raises .errors.CertDecodeError: if the file cannot be parsed

        """
        path = target.certificate
        try:
            with open(path, 'rb') as cert_file:
                data = cert_file.read()
        except FileNotFoundError:
            raise errors.CertNotFoundError(f'{path} does not exist', path)
        except OSError as error:
            raise errors.CertStorageError(f'unable to read {path}: {error}', path)

        try:
            cert, fingerprint = crypto_util.load_first_certificate(data)
        except ValueError as error:
            raise errors.CertDecodeError(f'unable to parse {path}: {error}', path)
        return ParsedCertificate(cert, fingerprint)

    def write(self, target: CertificateTarget, material: IssuedMaterial) -> None:
        """Persist freshly issued material.

        The certificate file holds the leaf followed by the chain, the
        key file the private key; a combined file holds both, key last.
        Blocks are joined with a newline and every file is terminated
        by one.

        :param .CertificateTarget target: where to write
        :param .IssuedMaterial material: what to write

        :raises .errors.CertStorageError: if a file cannot be written

        """
        cert_content = material.certificate
        if material.chain:
            cert_content += '\n' + material.chain

        if target.is_combined:
            self._write_file(target, target.certificate,
                             cert_content + '\n' + material.private_key,
                             constants.KEY_MODE)
        else:
            self._write_file(target, target.certificate, cert_content, constants.CERT_MODE)
            self._write_file(target, target.key, material.private_key, constants.KEY_MODE)

    def exists(self, target: CertificateTarget) -> bool:
        """Is the material of target present on disk?"""
        if not os.path.isfile(target.certificate):
            return False
        return target.is_combined or os.path.isfile(target.key)

    def _write_file(self, target: CertificateTarget, path: str, content: str,
                    mode: int) -> None:
        try:
            util.make_or_verify_dir(os.path.dirname(os.path.abspath(path)), constants.DIR_MODE)
            util.atomic_write(path, _terminated(content), mode)
        except OSError as error:
            raise errors.CertStorageError(f'unable to write {path}: {error}', path)
        logger.debug('Wrote %s with mode %s', path, oct(mode))

        if target.owner or target.group:
            self._chown(path, target.owner, target.group)

    @staticmethod
    def _chown(path: str, owner: Optional[str], group: Optional[str]) -> None:
        try:
            uid, gid = util.resolve_owner(owner, group)
            os.chown(path, uid, gid)
        except (KeyError, OSError) as error:
            logger.warning('Unable to set ownership of %s to %s:%s: %s',
                           path, owner or '', group or '', error)


def _terminated(content: str) -> str:
    return content if content.endswith('\n') else content + '\n'
