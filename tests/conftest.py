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

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from bootimg import keys


@pytest.fixture(scope="session")
def key_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("keys")


@pytest.fixture(scope="session")
def p384_key(key_dir):
    path = key_dir / "ecdsa-p384.key"
    keys.ECDSA384P1.generate().export_private(str(path))
    return path


@pytest.fixture(scope="session")
def p384_pub(key_dir, p384_key):
    path = key_dir / "ecdsa-p384.pub"
    keys.load(str(p384_key)).export_public(str(path))
    return path


@pytest.fixture(scope="session")
def other_p384_key(key_dir):
    path = key_dir / "ecdsa-p384-other.key"
    keys.ECDSA384P1.generate().export_private(str(path))
    return path


@pytest.fixture(scope="session")
def p256_key(key_dir):
    """A valid EC key on the wrong curve."""
    path = key_dir / "ecdsa-p256.key"
    pk = ec.generate_private_key(ec.SECP256R1())
    path.write_bytes(pk.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()))
    return path
