# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Cryptographic key management for bootimg.
"""

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey, EllipticCurvePublicKey, SECP384R1)

from .ecdsa import (ECDSA384P1, ECDSA384P1Public, ECDSAUsageError,
                    P384_RAW_SIG_LEN)

__all__ = ['ECDSA384P1', 'ECDSA384P1Public', 'ECDSAUsageError',
           'P384_RAW_SIG_LEN', 'load']


def _check_curve(pk):
    if not isinstance(pk.curve, SECP384R1):
        raise ECDSAUsageError(
            "Unsupported ECDSA curve: {} (only secp384r1 is accepted)"
            .format(pk.curve.name))


def load(path, passwd=None):
    """Try loading a key from the given path.

    Returns None if the password wasn't specified.
    """
    with open(path, 'rb') as f:
        raw_pem = f.read()
    try:
        pk = serialization.load_pem_private_key(
                raw_pem,
                password=passwd,
                backend=default_backend())
    # This is a bit nonsensical of an exception, but it is what
    # cryptography seems to currently raise if the password is needed.
    except TypeError:
        return None
    except ValueError:
        # This seems to happen if the key is a public key, let's try
        # loading it as a public key.
        pk = serialization.load_pem_public_key(
                raw_pem,
                backend=default_backend())

    if isinstance(pk, EllipticCurvePrivateKey):
        _check_curve(pk)
        return ECDSA384P1(pk)
    elif isinstance(pk, EllipticCurvePublicKey):
        _check_curve(pk)
        return ECDSA384P1Public(pk)
    else:
        raise ECDSAUsageError("Unknown key type: " + str(type(pk)))
