import os
import ssl
import uuid
import shutil
import logging
import datetime
import tempfile
import ipaddress

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

logger = logging.getLogger('asyshare.certs')


def subject_alt_names(host:str):
    names = []
    try:
        ip = ipaddress.ip_address(host)
        if ip.is_unspecified:
            # bound to every interface, cover at least the loopback names
            names.append(x509.DNSName('localhost'))
            names.append(x509.IPAddress(ipaddress.ip_address('127.0.0.1')))
        names.append(x509.IPAddress(ip))
    except ValueError:
        names.append(x509.DNSName(host))
    return names


def generate_selfsigned_cert(host:str, key_exp:int = 65537, key_size:int = 2048, valid_days:int = 365):
    """
    Creates a self-signed certificate for ``host``.

    Returns ``(cert_pem, key_pem, None)`` or ``(None, None, err)``.
    """
    try:
        logger.debug('Generating self-signed certificate for %s' % host)
        one_day = datetime.timedelta(1, 0, 0)
        validity = datetime.timedelta(valid_days, 0, 0)
        now = datetime.datetime.now(datetime.timezone.utc)

        private_key = rsa.generate_private_key(
            public_exponent=key_exp,
            key_size=key_size,
        )
        name = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, host),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'asyshare'),
        ])
        builder = x509.CertificateBuilder()
        builder = builder.subject_name(name)
        builder = builder.issuer_name(name)
        builder = builder.not_valid_before(now - one_day)
        builder = builder.not_valid_after(now + validity)
        builder = builder.serial_number(int(uuid.uuid4()))
        builder = builder.public_key(private_key.public_key())
        builder = builder.add_extension(
            x509.SubjectAlternativeName(subject_alt_names(host)), critical=False,
        )
        builder = builder.add_extension(
            x509.BasicConstraints(ca=False, path_length=None), critical=True,
        )
        certificate = builder.sign(private_key=private_key, algorithm=hashes.SHA256())

        cert_pem = certificate.public_bytes(encoding=serialization.Encoding.PEM)
        key_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )
        return cert_pem, key_pem, None
    except Exception as e:
        logger.exception('generate_selfsigned_cert')
        return None, None, e


def get_server_ssl_context(host:str):
    """
    Builds a server side SSL context around a freshly generated self-signed
    certificate. Returns ``(ssl_ctx, None)`` or ``(None, err)``.
    """
    cert_pem, key_pem, err = generate_selfsigned_cert(host)
    if err is not None:
        return None, err

    # SSLContext can only load the chain from files
    certdir = tempfile.mkdtemp(prefix='asyshare_')
    try:
        certfile = os.path.join(certdir, 'cert.pem')
        keyfile = os.path.join(certdir, 'key.pem')
        with open(certfile, 'wb') as f:
            f.write(cert_pem)
        with open(keyfile, 'wb') as f:
            f.write(key_pem)

        ssl_ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_ctx.load_cert_chain(certfile=certfile, keyfile=keyfile)
        return ssl_ctx, None
    except (OSError, ssl.SSLError) as e:
        logger.exception('get_server_ssl_context')
        return None, e
    finally:
        shutil.rmtree(certdir, ignore_errors=True)
