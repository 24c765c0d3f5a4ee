"""Test utilities."""
import datetime
import logging
import os
import shutil
import tempfile
import unittest
from typing import Any
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from vault_cert_manager import crypto_util
from vault_cert_manager._internal.session import IssuedMaterial
from vault_cert_manager.configuration import CertificateTarget


def make_key() -> ec.EllipticCurvePrivateKey:
    """Generate a fresh EC private key."""
    return ec.generate_private_key(ec.SECP256R1())


def key_pem(key: ec.EllipticCurvePrivateKey) -> str:
    """PEM of key in PKCS8 form."""
    return key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption()).decode('ascii')


def cert_pem(cert: x509.Certificate) -> str:
    """PEM of cert."""
    return cert.public_bytes(serialization.Encoding.PEM).decode('ascii')


def make_cert(common_name: str = 'example.com',
              not_before: Optional[datetime.datetime] = None,
              lifetime: datetime.timedelta = datetime.timedelta(hours=24),
              not_after: Optional[datetime.datetime] = None,
              key: Optional[ec.EllipticCurvePrivateKey] = None
              ) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Return a self-signed certificate and its key.

    The certificate is valid from not_before (default: a minute ago)
    until not_after (default: not_before + lifetime).

    """
    key = key or make_key()
    not_before = not_before or (
        datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(minutes=1))
    not_after = not_after or not_before + lifetime
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    cert = x509.CertificateBuilder(
        issuer_name=name,
        subject_name=name,
        public_key=key.public_key(),
        serial_number=x509.random_serial_number(),
        not_valid_before=not_before,
        not_valid_after=not_after,
    ).add_extension(
        x509.SubjectAlternativeName([x509.DNSName(common_name)]),
        critical=False,
    ).sign(
        private_key=key,
        algorithm=hashes.SHA256(),
    )
    return cert, key


def fingerprint_of(cert: x509.Certificate) -> str:
    """Fingerprint of cert as computed by the store."""
    return crypto_util.fingerprint(cert.public_bytes(serialization.Encoding.DER))


def make_material(common_name: str = 'example.com', with_chain: bool = True,
                  **kwargs: Any) -> IssuedMaterial:
    """Issued material holding a fresh leaf, an optional CA and the leaf key."""
    cert, key = make_cert(common_name, **kwargs)
    chain = ''
    if with_chain:
        ca_cert, _ = make_cert('Test CA')
        chain = cert_pem(ca_cert)
    return IssuedMaterial(
        certificate=cert_pem(cert).strip(),
        private_key=key_pem(key).strip(),
        chain=chain.strip(),
        serial_number=format(cert.serial_number, 'x'),
        expiration=cert.not_valid_after_utc,
    )


def make_target(directory: str, name: str = 'web', combined: bool = False,
                **kwargs: Any) -> CertificateTarget:
    """Certificate target writing into directory."""
    cert_path = os.path.join(directory, name, 'cert.pem')
    key_path = cert_path if combined else os.path.join(directory, name, 'key.pem')
    fields = dict(
        name=name,
        role='web-server',
        common_name=f'{name}.example.com',
        certificate=cert_path,
        key=key_path,
    )
    fields.update(kwargs)
    return CertificateTarget(**fields)


class TempDirTestCase(unittest.TestCase):
    """Base test class which sets up and tears down a temporary directory"""

    def setUp(self) -> None:
        """Execute before test"""
        self.tempdir = tempfile.mkdtemp()

    def tearDown(self) -> None:
        """Execute after test"""
        # Remove logging handlers that tests may have installed so they won't
        # be accidentally used in future tests.
        logging.getLogger().handlers = []
        shutil.rmtree(self.tempdir)
