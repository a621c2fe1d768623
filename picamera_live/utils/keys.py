"""
TLS key provisioning for the HTTPS server.

Generates a self-signed certificate on first use and reuses it afterwards.
"""

import datetime
import ssl
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .config import Config
from .exceptions import CertificateError
from .logger import get_logger


logger = get_logger(__name__)

PRIVATE_KEY_NAME = 'private.pem'
CERTIFICATE_NAME = 'public.pem'
ORGANIZATION = 'picamera-live'


def key_paths(config: Config) -> tuple[Path, Path]:
    """
    Get paths to the TLS private key and certificate, creating them if needed.

    Args:
        config: Application configuration

    Returns:
        Tuple of (private_key_path, certificate_path)

    Raises:
        CertificateError: If the key pair cannot be generated or written
    """
    keys_dir = config.get_keys_dir()
    private_key_path = keys_dir / PRIVATE_KEY_NAME
    certificate_path = keys_dir / CERTIFICATE_NAME

    if not private_key_path.exists() or not certificate_path.exists():
        create_keys(private_key_path, certificate_path)

    return private_key_path, certificate_path


def create_keys(private_key_path: Path, certificate_path: Path) -> None:
    """Write a new RSA key and a one-year self-signed certificate for localhost."""
    logger.info("Generating RSA key...")
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    logger.info("Generating certificate...")
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
    ])
    not_before = datetime.datetime.now(datetime.timezone.utc)
    not_after = not_before + datetime.timedelta(days=365)

    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName('localhost')]), critical=False)
        .sign(key, hashes.SHA256())
    )

    try:
        private_key_path.write_bytes(key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ))
        private_key_path.chmod(0o600)
        certificate_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    except OSError as e:
        raise CertificateError(f"Unable to write TLS key pair: {e}")

    logger.info("Done generating certificate")


def create_ssl_context(config: Config) -> ssl.SSLContext:
    """Build a server SSL context from the provisioned key pair."""
    private_key_path, certificate_path = key_paths(config)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        context.load_cert_chain(certfile=str(certificate_path), keyfile=str(private_key_path))
    except (OSError, ssl.SSLError) as e:
        raise CertificateError(f"Unable to load TLS certificate: {e}")

    return context
