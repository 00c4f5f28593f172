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

import hashlib
import zlib

import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed, encode_dss_signature)
from cryptography.hazmat.primitives.hashes import SHA384

from bootimg import image, keys
from tests.constants import (HEADER_SIZE, CRC_OFF, DIGEST_OFF, SIG_OFF,
                             build, read)

ZI_CHUNKS = [(1, 0x80100000, 0x4000)]


def public_key(keyfile):
    pk = serialization.load_pem_private_key(keyfile.read_bytes(),
                                            password=None)
    return pk.public_key()


def verify_raw(pub, signature, digest):
    r = int.from_bytes(signature[:48], "big")
    s = int.from_bytes(signature[48:], "big")
    pub.verify(encode_dss_signature(r, s), digest,
               ec.ECDSA(Prehashed(SHA384())))


def unsigned_view(b):
    """The image as it was just before signing."""
    pre = bytearray(b)
    pre[DIGEST_OFF:HEADER_SIZE] = bytes(HEADER_SIZE - DIGEST_OFF)
    return bytes(pre)


class TestSign:

    def test_digest_and_signature(self, tmp_path, p384_key):
        out = tmp_path / "signed.bin"
        img = build(out, [100, 33], ZI_CHUNKS, keyfile=str(p384_key))
        b = read(out)

        assert len(b) == img.header.boot_image_length
        digest = b[DIGEST_OFF:SIG_OFF]
        signature = b[SIG_OFF:HEADER_SIZE]
        assert len(signature) == 96

        expected = hashlib.sha384(unsigned_view(b)).digest()
        assert digest == expected
        verify_raw(public_key(p384_key), signature, digest)

    def test_crc_excludes_signature(self, tmp_path, p384_key):
        """The CRC stored in a signed image is the one of the unsigned
        header."""
        signed = tmp_path / "signed.bin"
        plain = tmp_path / "plain.bin"
        build(signed, [100], keyfile=str(p384_key))
        build(plain, [100])
        b_signed = read(signed)
        b_plain = read(plain)

        assert b_signed[CRC_OFF:CRC_OFF + 4] == b_plain[CRC_OFF:CRC_OFF + 4]
        assert unsigned_view(b_signed) == b_plain

        header = bytearray(unsigned_view(b_signed)[:HEADER_SIZE])
        header[CRC_OFF:CRC_OFF + 4] = bytes(4)
        assert zlib.crc32(bytes(header)) == \
            int.from_bytes(b_signed[CRC_OFF:CRC_OFF + 4], "little")

    def test_digest_excludes_final_signature(self, tmp_path, p384_key):
        out = tmp_path / "signed.bin"
        build(out, [10], keyfile=str(p384_key))
        b = read(out)
        # hashing the final file gives a different value
        assert hashlib.sha384(b).digest() != b[DIGEST_OFF:SIG_OFF]

    def test_signatures_differ_per_key(self, tmp_path, p384_key,
                                       other_p384_key):
        a = tmp_path / "a.bin"
        b = tmp_path / "b.bin"
        build(a, [10], keyfile=str(p384_key))
        build(b, [10], keyfile=str(other_p384_key))
        sig_b = read(b)[SIG_OFF:HEADER_SIZE]
        digest = read(a)[DIGEST_OFF:SIG_OFF]
        assert digest == read(b)[DIGEST_OFF:SIG_OFF]
        with pytest.raises(InvalidSignature):
            verify_raw(public_key(p384_key), sig_b, digest)

    def test_big_endian_signed(self, tmp_path, p384_key):
        out = tmp_path / "signed.bin"
        build(out, [10, 20], keyfile=str(p384_key), endian="big")
        b = read(out)
        assert hashlib.sha384(unsigned_view(b)).digest() == \
            b[DIGEST_OFF:SIG_OFF]

    def test_key_object(self, tmp_path, p384_key):
        out = tmp_path / "signed.bin"
        img = image.Image()
        img.add_chunk(0, 0, 4, 0, b"abcd")
        img.write(str(out), keys.load(str(p384_key)))
        assert img.header.is_signed
        assert read(out)[DIGEST_OFF:SIG_OFF] == img.header.digest


class TestSignErrors:

    def _image(self):
        img = image.Image()
        img.add_chunk(0, 0, 4, 0, b"abcd")
        return img

    def test_wrong_curve(self, tmp_path, p256_key):
        with pytest.raises(keys.ECDSAUsageError):
            keys.load(str(p256_key))
        out = tmp_path / "img.bin"
        with pytest.raises(image.BootImageError):
            self._image().generate(str(out), str(p256_key))
        assert not out.exists()

    def test_public_key_cannot_sign(self, tmp_path, p384_pub):
        with pytest.raises(image.BootImageError):
            self._image().generate(str(tmp_path / "img.bin"), str(p384_pub))

    def test_missing_key(self, tmp_path):
        with pytest.raises(image.BootImageError):
            self._image().generate(str(tmp_path / "img.bin"),
                                   str(tmp_path / "missing.key"))

    def test_garbage_key(self, tmp_path):
        key = tmp_path / "garbage.key"
        key.write_text("not a key")
        with pytest.raises(image.BootImageError):
            self._image().generate(str(tmp_path / "img.bin"), str(key))

    def test_password_protected_key(self, tmp_path):
        key = tmp_path / "protected.key"
        keys.ECDSA384P1.generate().export_private(str(key), passwd=b"secret")
        with pytest.raises(image.BootImageError):
            self._image().generate(str(tmp_path / "img.bin"), str(key))

        out = tmp_path / "img.bin"
        self._image().generate(str(out), str(key), passwd=b"secret")
        assert image.Image.verify(str(out), keys.load(str(key), b"secret"))[0] \
            == image.VerifyResult.OK
