"""
ECDSA key management
"""

# SPDX-License-Identifier: Apache-2.0
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed, decode_dss_signature, encode_dss_signature)
from cryptography.hazmat.primitives.hashes import SHA384

from .general import KeyClass
from .privatebytes import PrivateBytesMixin

# r and s are each at most half of the raw signature
P384_COMPONENT_LEN = 48
P384_RAW_SIG_LEN = 2 * P384_COMPONENT_LEN


class ECDSAUsageError(Exception):
    pass


class ECDSAPublicKey(KeyClass):
    """
    Wrapper around an ECDSA public key.
    """
    def __init__(self, key):
        self.key = key

    def _unsupported(self, name):
        raise ECDSAUsageError("Operation {} requires private key".format(name))

    def _get_public(self):
        return self.key

    def get_public_bytes(self):
        # The key is handed to verifiers in "SubjectPublicKeyInfo" format
        return self._get_public().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo)

    def get_public_pem(self):
        return self._get_public().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo)

    def get_private_bytes(self, minimal, format):
        self._unsupported('get_private_bytes')

    def export_private(self, path, passwd=None):
        self._unsupported('export_private')

    def export_public(self, path):
        """Write the public key to the given file."""
        pem = self.get_public_pem()
        with open(path, 'wb') as f:
            f.write(pem)


class ECDSAPrivateKey(PrivateBytesMixin):
    """
    Wrapper around an ECDSA private key.
    """
    def __init__(self, key):
        self.key = key

    def _get_public(self):
        return self.key.public_key()

    _VALID_FORMATS = {
        'pkcs8': serialization.PrivateFormat.PKCS8,
        'openssl': serialization.PrivateFormat.TraditionalOpenSSL
    }
    _DEFAULT_FORMAT = 'pkcs8'

    def get_private_bytes(self, minimal, format):
        if minimal:
            raise ECDSAUsageError(
                "{} does not support minimal private keys".format(
                    self.shortname()))
        format, priv = self._get_private_bytes(format, ECDSAUsageError)
        return priv

    def export_private(self, path, passwd=None):
        """Write the private key to the given file, protecting it with
        the optional password."""
        if passwd is None:
            enc = serialization.NoEncryption()
        else:
            enc = serialization.BestAvailableEncryption(passwd)
        pem = self.key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=enc)
        with open(path, 'wb') as f:
            f.write(pem)


class ECDSA384P1Public(ECDSAPublicKey):
    """
    Wrapper around an ECDSA (p384) public key.
    """
    def __init__(self, key):
        super().__init__(key)
        self.key = key

    def shortname(self):
        return "ecdsap384"

    def verify_digest(self, signature, digest):
        """Check a raw r || s signature over a SHA-384 digest.

        Raises InvalidSignature on mismatch.
        """
        if len(signature) != P384_RAW_SIG_LEN:
            raise InvalidSignature()
        r = int.from_bytes(signature[:P384_COMPONENT_LEN], 'big')
        s = int.from_bytes(signature[P384_COMPONENT_LEN:], 'big')
        k = self.key
        if isinstance(self.key, ec.EllipticCurvePrivateKey):
            k = self.key.public_key()
        return k.verify(signature=encode_dss_signature(r, s), data=digest,
                        signature_algorithm=ec.ECDSA(Prehashed(SHA384())))


class ECDSA384P1(ECDSAPrivateKey, ECDSA384P1Public):
    """
    Wrapper around an ECDSA (p384) private key.
    """

    def __init__(self, key):
        """key should be an instance of EllipticCurvePrivateKey"""
        super().__init__(key)
        self.key = key

    @staticmethod
    def generate():
        pk = ec.generate_private_key(
                ec.SECP384R1(),
                backend=default_backend())
        return ECDSA384P1(pk)

    def sign_digest(self, digest):
        """Sign a SHA-384 digest, returning the raw 96 byte r || s."""
        der = self.key.sign(
                data=digest,
                signature_algorithm=ec.ECDSA(Prehashed(SHA384())))
        r, s = decode_dss_signature(der)
        # Shorter integers are left padded with zeros
        return (r.to_bytes(P384_COMPONENT_LEN, 'big') +
                s.to_bytes(P384_COMPONENT_LEN, 'big'))
