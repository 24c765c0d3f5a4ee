"""Vault Cert Manager crypto utility functions."""
import base64
import binascii
import datetime
import hashlib
import logging
import re

from cryptography import x509
from OpenSSL import SSL

from vault_cert_manager import errors

logger = logging.getLogger(__name__)

# Finds the first PEM encapsulated block according to rfc7468#section-2.
# The label is captured so that the caller can check the block type.
PEM_BLOCK_REGEX = re.compile(
    rb"""-----BEGIN ([A-Z0-9 ]+)-----\r?
(.+?)\r?
-----END \1-----""",
    re.DOTALL  # DOTALL (/s) because the base64text may include newlines
)


def first_pem_block(data: bytes) -> tuple[str, bytes]:
    """Decode the first PEM block found in data.

    :param bytes data: PEM encoded content, possibly holding several blocks

    :returns: label of the block (e.g. ``CERTIFICATE``) and its DER bytes
    :rtype: tuple

    :raises ValueError: if no PEM block is found or it is not valid base64

    """
    match = PEM_BLOCK_REGEX.search(data)
    if match is None:
        raise ValueError('no PEM block found')
    try:
        der = base64.b64decode(b''.join(match.group(2).split()), validate=True)
    except binascii.Error as error:
        raise ValueError(f'invalid base64 in PEM block: {error}')
    return match.group(1).decode('ascii'), der


def fingerprint(der: bytes) -> str:
    """Fingerprint of DER encoded certificate bytes.

    :param bytes der: DER encoded certificate

    :returns: sha256 digest of der in lowercase hexadecimal
    :rtype: str

    """
    return hashlib.sha256(der).hexdigest()


def load_first_certificate(data: bytes) -> tuple[x509.Certificate, str]:
    """Parse the first certificate of a PEM bundle.

    :param bytes data: PEM encoded certificate followed by an optional chain
        and/or private key

    :returns: parsed certificate and its fingerprint
    :rtype: tuple

    :raises ValueError: if the first block is not a parsable certificate

    """
    label, der = first_pem_block(data)
    if label != 'CERTIFICATE':
        raise ValueError(f'first PEM block is {label}, expected CERTIFICATE')
    return x509.load_der_x509_certificate(der), fingerprint(der)


def notAfter(cert: x509.Certificate) -> datetime.datetime:
    """When does the cert stop being valid?

    :param cryptography.x509.Certificate cert: parsed certificate

    :returns: the timezone aware notAfter value of cert
    :rtype: :class:`datetime.datetime`

    """
    return cert.not_valid_after_utc


def notBefore(cert: x509.Certificate) -> datetime.datetime:
    """When does the cert start being valid?

    :param cryptography.x509.Certificate cert: parsed certificate

    :returns: the timezone aware notBefore value of cert
    :rtype: :class:`datetime.datetime`

    """
    return cert.not_valid_before_utc


def verify_cert_matches_priv_key(cert_path: str, key_path: str) -> None:
    """ Verifies that the private key and cert match.

    :param str cert_path: path to a cert in PEM format
    :param str key_path: path to a private key file

    :raises errors.Error: If they can't be loaded or don't match.
    """
    try:
        context = SSL.Context(SSL.TLS_METHOD)
        context.use_certificate_file(cert_path)
        context.use_privatekey_file(key_path)
        context.check_privatekey()
    except (OSError, SSL.Error) as e:
        error_str = ("verifying the certificate located at {0} matches the "
                     "private key located at {1} has failed. "
                     "Details: {2}".format(cert_path, key_path, e))
        logger.debug(error_str, exc_info=True)
        raise errors.Error(error_str)
