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
Boot image construction, signing and verification.

A boot image is laid out as::

    0                    header record, padded
    chunkTableOffset     chunk descriptors, sentinel, padding
    ziChunkTableOffset   ZI chunk descriptors, sentinel, padding
    headerLength         chunk blobs, each padded

The header CRC is computed with the signature block zeroed, and the
SHA-384 digest is computed over the whole image after the CRC has been
stored but before the digest and signature are filled in.  Loaders check
the two in that order, so the layering must not change.
"""

import hashlib
import logging
import struct
import zlib
from collections import namedtuple
from enum import Enum

import click
from cryptography.exceptions import InvalidSignature
from intelhex import IntelHex, IntelHexError

from . import keys, layout
from .layout import (CHUNK_DESC_SIZE, ZI_CHUNK_DESC_SIZE, calculate_padding)

log = logging.getLogger(__name__)

BOOT_MAGIC = 0xB007C0DE
BOOT_VERSION = 1
IMAGE_HEADER_SIZE = 448
SET_NAME_LEN = 256
DIGEST_LEN = 48  # SHA-384
SIG_LEN = keys.P384_RAW_SIG_LEN

U32_MAX = 0xffffffff
U64_MAX = 0xffffffffffffffff

HEADER_CRC_OFFSET = 16
HEADER_CRC_SIZE = 4
SIGNATURE_OFFSET = IMAGE_HEADER_SIZE - DIGEST_LEN - SIG_LEN

STRUCT_ENDIAN_DICT = {
        'little': '<',
        'big':    '>'
}

HEADER_FMT = ('I' +      # magic              uint32
              'I' +      # version            uint32
              'Q' +      # headerLength       uint64
              'I' +      # headerCrc          uint32
              '4x' +     # pad
              'Q' +      # chunkTableOffset   uint64
              'Q' +      # ziChunkTableOffset uint64
              '256s' +   # setName
              'Q' +      # bootImageLength    uint64
              '48s' +    # signature.digest
              '96s')     # signature.ecdsaSig

CHUNK_FMT = ('I4x' +     # owner
             'Q' +       # loadAddr
             'Q' +       # execAddr
             'Q' +       # size
             'I4x')      # crc32

ZI_CHUNK_FMT = ('I4x' +  # owner
                'Q' +    # execAddr
                'Q')     # size

VerifyResult = Enum('VerifyResult',
                    ['OK', 'INVALID_MAGIC', 'INVALID_LENGTH',
                     'INVALID_LAYOUT', 'INVALID_CRC', 'INVALID_HASH',
                     'INVALID_SIGNATURE', 'UNSIGNED'])

BootChunk = namedtuple('BootChunk',
                       ['owner', 'load_addr', 'exec_addr', 'size', 'crc32'])
BootZIChunk = namedtuple('BootZIChunk', ['owner', 'exec_addr', 'size'])

CHUNK_SENTINEL = BootChunk(0, 0, 0, 0, 0)
ZI_CHUNK_SENTINEL = BootZIChunk(0, 0, 0)

ParsedImage = namedtuple('ParsedImage',
                         ['endian', 'header', 'chunks', 'zi_chunks'])


class BootImageError(click.ClickException):
    """A failure caused by the environment or the inputs: I/O errors,
    unusable keys, malformed input or image files."""


class LayoutError(AssertionError):
    """The output stream disagrees with the computed layout.

    This is always a bug in the offset arithmetic, never a user error.
    """


def _check(cond, msg):
    if not cond:
        raise LayoutError(msg)


def _check_fields(kind, **fields):
    """Reject descriptor values that do not fit their on-disk width."""
    for name, value in fields.items():
        limit = U32_MAX if name in ('owner', 'crc32') else U64_MAX
        if not 0 <= value <= limit:
            raise BootImageError(
                "{} {} out of range: {} (must be 0..0x{:x})".format(
                    kind, name, value, limit))


class BootImageHeader:
    """The fixed size record at offset 0 of every boot image."""

    def __init__(self, set_name=b''):
        self.magic = BOOT_MAGIC
        self.version = BOOT_VERSION
        self.header_length = 0
        self.header_crc = 0
        self.chunk_table_offset = 0
        self.zi_chunk_table_offset = 0
        self.set_name = set_name
        self.boot_image_length = 0
        self.digest = bytes(DIGEST_LEN)
        self.signature = bytes(SIG_LEN)

    def __repr__(self):
        return "<BootImageHeader magic=0x{:08x}, version={}, \
                header_length={}, header_crc=0x{:08x}, \
                chunk_table_offset={}, zi_chunk_table_offset={}, \
                boot_image_length={}>".format(
                    self.magic,
                    self.version,
                    self.header_length,
                    self.header_crc,
                    self.chunk_table_offset,
                    self.zi_chunk_table_offset,
                    self.boot_image_length)

    @property
    def is_signed(self):
        return any(self.digest) or any(self.signature)

    def pack(self, endian):
        fmt = STRUCT_ENDIAN_DICT[endian] + HEADER_FMT
        assert struct.calcsize(fmt) == IMAGE_HEADER_SIZE
        return struct.pack(fmt,
                           self.magic,
                           self.version,
                           self.header_length,
                           self.header_crc,
                           self.chunk_table_offset,
                           self.zi_chunk_table_offset,
                           self.set_name,
                           self.boot_image_length,
                           self.digest,
                           self.signature)

    @classmethod
    def unpack(cls, b, endian):
        fmt = STRUCT_ENDIAN_DICT[endian] + HEADER_FMT
        (magic, version, header_length, header_crc, chunk_table_offset,
         zi_chunk_table_offset, set_name, boot_image_length, digest,
         signature) = struct.unpack_from(fmt, b, 0)
        header = cls(set_name.rstrip(b'\0'))
        header.magic = magic
        header.version = version
        header.header_length = header_length
        header.header_crc = header_crc
        header.chunk_table_offset = chunk_table_offset
        header.zi_chunk_table_offset = zi_chunk_table_offset
        header.boot_image_length = boot_image_length
        header.digest = digest
        header.signature = signature
        return header


def _zero_signature(header_bytes):
    b = bytearray(header_bytes[:IMAGE_HEADER_SIZE])
    b[SIGNATURE_OFFSET:IMAGE_HEADER_SIZE] = bytes(DIGEST_LEN + SIG_LEN)
    return b


def header_crc(header_bytes):
    """CRC-32 of a header record, taken with its CRC field and signature
    block zeroed, exactly as it was when the CRC was first computed."""
    b = _zero_signature(header_bytes)
    b[HEADER_CRC_OFFSET:HEADER_CRC_OFFSET + HEADER_CRC_SIZE] = \
        bytes(HEADER_CRC_SIZE)
    return zlib.crc32(bytes(b))


def image_digest(b, boot_image_length):
    """SHA-384 over the first boot_image_length bytes of an image, with the
    signature block zeroed as it was before signing."""
    sha = hashlib.sha384()
    sha.update(bytes(_zero_signature(b)))
    sha.update(bytes(b[IMAGE_HEADER_SIZE:boot_image_length]))
    return sha.digest()


def detect_endian(b):
    if len(b) < 4:
        return None
    if struct.unpack_from("<I", b, 0)[0] == BOOT_MAGIC:
        return "little"
    if struct.unpack_from(">I", b, 0)[0] == BOOT_MAGIC:
        return "big"
    return None


def _read_table(b, offset, end, fmt, entry_size, entry_type, sentinel):
    entries = []
    while True:
        if offset + entry_size > end:
            raise BootImageError("Invalid image: unterminated descriptor "
                                 "table at 0x{:x}".format(offset))
        entry = entry_type._make(struct.unpack_from(fmt, b, offset))
        offset += entry_size
        if entry == sentinel:
            return entries
        entries.append(entry)


def read_image(b):
    """Parse the header and both descriptor tables of an image."""
    endian = detect_endian(b)
    if endian is None:
        raise BootImageError("Invalid image: magic mismatch")
    if len(b) < IMAGE_HEADER_SIZE:
        raise BootImageError("Invalid image: truncated header")
    e = STRUCT_ENDIAN_DICT[endian]
    header = BootImageHeader.unpack(b, endian)

    limit = min(len(b), header.header_length)
    chunks = _read_table(b, header.chunk_table_offset,
                         min(limit, header.zi_chunk_table_offset),
                         e + CHUNK_FMT, CHUNK_DESC_SIZE, BootChunk,
                         CHUNK_SENTINEL)
    zi_chunks = _read_table(b, header.zi_chunk_table_offset, limit,
                            e + ZI_CHUNK_FMT, ZI_CHUNK_DESC_SIZE,
                            BootZIChunk, ZI_CHUNK_SENTINEL)
    return ParsedImage(endian, header, chunks, zi_chunks)


def check_layout(parsed):
    """Return True if the offsets stored in a parsed image are the ones the
    layout rules give for its tables."""
    header = parsed.header
    sizes = [c.size for c in parsed.chunks]
    nzi = len(parsed.zi_chunks)
    return (header.chunk_table_offset ==
            layout.chunk_table_offset(IMAGE_HEADER_SIZE) and
            header.zi_chunk_table_offset ==
            layout.zi_chunk_table_offset(IMAGE_HEADER_SIZE, len(sizes)) and
            header.header_length ==
            layout.blob_region_offset(IMAGE_HEADER_SIZE, len(sizes), nzi) and
            header.boot_image_length ==
            layout.boot_image_length(IMAGE_HEADER_SIZE, sizes, nzi) and
            [c.load_addr for c in parsed.chunks] ==
            layout.chunk_load_addresses(IMAGE_HEADER_SIZE, sizes, nzi))


class Image:

    def __init__(self, endian="little", set_name=""):
        if endian not in STRUCT_ENDIAN_DICT:
            raise BootImageError("Invalid endianness: {}".format(endian))
        name = set_name.encode('utf-8')
        if len(name) >= SET_NAME_LEN:
            raise BootImageError(
                "Set name must be shorter than {} bytes".format(SET_NAME_LEN))

        self.endian = endian
        self.header = BootImageHeader(name)
        self.chunks = []
        self.zi_chunks = []
        self._buffers = []
        self.generated = False

        # Padded region sizes, recorded as each region is written
        self._header_padded_size = 0
        self._chunk_table_padded_size = 0
        self._zi_chunk_table_padded_size = 0

    def __repr__(self):
        return "<Image endian={}, set_name={}, chunks={}, zi_chunks={}, \
                generated={}>".format(
                    self.endian,
                    self.header.set_name.decode('utf-8', 'replace'),
                    len(self.chunks),
                    len(self.zi_chunks),
                    self.generated)

    def _check_open(self):
        if self.generated:
            raise BootImageError("Image has already been generated")

    def add_chunk(self, owner, exec_addr, size, crc32, buffer):
        """Queue a chunk and take over its buffer.

        Zero sized chunks are dropped, so callers can pass every region
        without filtering.  Returns the number of queued chunks.
        """
        self._check_open()
        _check_fields("chunk", owner=owner, exec_addr=exec_addr, size=size,
                      crc32=crc32)
        if not size:
            log.debug("chunk: execAddr = 0x%016x, size = 0 => skipping",
                      exec_addr)
            return len(self.chunks)
        if buffer is None or len(buffer) != size:
            raise ValueError("Chunk buffer must hold exactly {} bytes"
                             .format(size))

        self.chunks.append(BootChunk(owner, 0, exec_addr, size, crc32))
        self._buffers.append(buffer)
        log.debug("chunk: execAddr = 0x%016x, size = 0x%016x, CRC32 = %x",
                  exec_addr, size, zlib.crc32(buffer))
        return len(self.chunks)

    def add_zi_chunk(self, owner, exec_addr, size):
        """Queue a zero-initialized region.  Returns the number of queued
        ZI chunks."""
        self._check_open()
        _check_fields("ZI chunk", owner=owner, exec_addr=exec_addr,
                      size=size)
        self.zi_chunks.append(BootZIChunk(owner, exec_addr, size))
        log.debug("ziChunk: execAddr = 0x%016x, size = 0x%016x",
                  exec_addr, size)
        return len(self.zi_chunks)

    def load_chunk(self, owner, exec_addr, path):
        """Add the contents of a raw binary file as one chunk."""
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except FileNotFoundError:
            raise BootImageError("Input file not found ({})".format(path))
        return self.add_chunk(owner, exec_addr, len(data), zlib.crc32(data),
                              data)

    def load_hex(self, owner, path):
        """Add every contiguous segment of an Intel HEX file as a chunk
        placed at the segment's address."""
        try:
            ih = IntelHex(path)
        except FileNotFoundError:
            raise BootImageError("Input file not found ({})".format(path))
        except IntelHexError as e:
            raise BootImageError("Invalid Intel HEX file {}: {}"
                                 .format(path, e))
        count = len(self.chunks)
        for start, stop in ih.segments():
            data = bytes(ih.tobinarray(start=start, end=stop - 1))
            count = self.add_chunk(owner, start, len(data),
                                   zlib.crc32(data), data)
        return count

    def generate(self, outfile, keyfile=None, passwd=None):
        """Write the image to outfile, signing it if a key file is given."""
        key = None
        if keyfile is not None:
            try:
                key = keys.load(keyfile, passwd)
            except FileNotFoundError:
                raise BootImageError("Key file not found ({})".format(keyfile))
            except (keys.ECDSAUsageError, ValueError) as e:
                raise BootImageError("Unusable key {}: {}".format(keyfile, e))
            if key is None:
                raise BootImageError("Key {} is protected by a passphrase"
                                     .format(keyfile))
        self.write(outfile, key)

    def write(self, outfile, key=None):
        """Serialize the image.  key is an already loaded ECDSA P-384
        private key, or None for a checksum-only image."""
        self._check_open()
        if key is not None and not isinstance(key, keys.ECDSA384P1):
            raise BootImageError("Signing requires an ECDSA P-384 "
                                 "private key")

        self.generated = True
        # The writer owns the blob buffers from here on
        buffers, self._buffers = self._buffers, None

        log.info("Output filename is %s", outfile)
        try:
            with open(outfile, 'w+b') as f:
                self._generate_header(f)
                self._generate_chunks(f)
                self._generate_zi_chunks(f)

                self.header.header_length = f.tell()
                _check(self.header.header_length ==
                       self._header_padded_size +
                       self._chunk_table_padded_size +
                       self._zi_chunk_table_padded_size,
                       "header length {} does not match its regions".format(
                           self.header.header_length))
                log.debug("End of header is %d", self.header.header_length)

                self._generate_blobs(f, buffers)
                self.header.boot_image_length = f.tell()
                _check(self.header.boot_image_length ==
                       layout.boot_image_length(
                           IMAGE_HEADER_SIZE,
                           [c.size for c in self.chunks],
                           len(self.zi_chunks)),
                       "boot image length {} does not match the layout"
                       .format(self.header.boot_image_length))

                self.header.header_crc = header_crc(
                    self.header.pack(self.endian))
                # rewrite header for CRC
                self._generate_header(f)

                self._sign_payload(f, key)
        except OSError as e:
            raise BootImageError("Failed to write {}: {}".format(outfile, e))

    def _write_pad(self, f, pad):
        f.write(bytes(pad))

    def _generate_header(self, f):
        log.info("Outputting payload header")
        f.seek(0)
        f.write(self.header.pack(self.endian))
        self._write_pad(f, calculate_padding(IMAGE_HEADER_SIZE))
        self._header_padded_size = f.tell()

    def _pack_chunk(self, chunk):
        e = STRUCT_ENDIAN_DICT[self.endian]
        return struct.pack(e + CHUNK_FMT, chunk.owner, chunk.load_addr,
                           chunk.exec_addr, chunk.size, chunk.crc32)

    def _pack_zi_chunk(self, zi_chunk):
        e = STRUCT_ENDIAN_DICT[self.endian]
        return struct.pack(e + ZI_CHUNK_FMT, zi_chunk.owner,
                           zi_chunk.exec_addr, zi_chunk.size)

    def _generate_chunks(self, f):
        log.info("Outputting code/data chunks")
        self.header.chunk_table_offset = f.tell()
        _check(self.header.chunk_table_offset ==
               IMAGE_HEADER_SIZE + calculate_padding(IMAGE_HEADER_SIZE),
               "chunk table starts at {}".format(
                   self.header.chunk_table_offset))

        num_chunks = len(self.chunks)
        num_zi_chunks = len(self.zi_chunks)
        # blobs follow both tables, each with its sentinel and padding
        blob_base = (self.header.chunk_table_offset
                     + num_chunks * CHUNK_DESC_SIZE
                     + CHUNK_DESC_SIZE
                     + calculate_padding(CHUNK_DESC_SIZE * (num_chunks + 1))
                     + num_zi_chunks * ZI_CHUNK_DESC_SIZE
                     + ZI_CHUNK_DESC_SIZE
                     + calculate_padding(
                         ZI_CHUNK_DESC_SIZE * (num_zi_chunks + 1)))

        cumulative_blob_size = 0
        for i, chunk in enumerate(self.chunks):
            chunk = chunk._replace(load_addr=blob_base + cumulative_blob_size)
            self.chunks[i] = chunk
            cumulative_blob_size += (chunk.size
                                     + calculate_padding(chunk.size))

            log.debug("- Processing chunk %d (%d bytes) at file position %d "
                      "(blob is expected at %d)",
                      i, chunk.size, f.tell(), chunk.load_addr)
            f.write(self._pack_chunk(chunk))

        f.write(self._pack_chunk(CHUNK_SENTINEL))
        self._write_pad(f, calculate_padding(
            CHUNK_DESC_SIZE * (num_chunks + 1)))

        self._chunk_table_padded_size = (f.tell()
                                         - self.header.chunk_table_offset)

    def _generate_zi_chunks(self, f):
        log.info("Outputting ZI chunks")
        self.header.zi_chunk_table_offset = f.tell()
        num_chunks = len(self.chunks)
        _check(self.header.zi_chunk_table_offset ==
               self.header.chunk_table_offset
               + num_chunks * CHUNK_DESC_SIZE
               + CHUNK_DESC_SIZE
               + calculate_padding(CHUNK_DESC_SIZE * (num_chunks + 1)),
               "ZI chunk table starts at {}".format(
                   self.header.zi_chunk_table_offset))

        for i, zi_chunk in enumerate(self.zi_chunks):
            log.debug("- Processing ziChunk %d (%d bytes) at file position %d",
                      i, zi_chunk.size, f.tell())
            f.write(self._pack_zi_chunk(zi_chunk))

        f.write(self._pack_zi_chunk(ZI_CHUNK_SENTINEL))
        self._write_pad(f, calculate_padding(
            ZI_CHUNK_DESC_SIZE * (len(self.zi_chunks) + 1)))

        self._zi_chunk_table_padded_size = (f.tell()
                                            - self.header.zi_chunk_table_offset)

    def _generate_blobs(self, f, buffers):
        log.info("Outputting binary data")
        for i, chunk in enumerate(self.chunks):
            posn = f.tell()
            _check(posn == chunk.load_addr,
                   "blob {} at {}, expected at {}".format(
                       i, posn, chunk.load_addr))
            log.debug("- Processing blob %d (%d bytes) at file position %d",
                      i, chunk.size, posn)

            # release each buffer as soon as it is on disk
            buf, buffers[i] = buffers[i], None
            f.write(buf)
            del buf

            self._write_pad(f, calculate_padding(chunk.size))

    def _sign_payload(self, f, key):
        if key is None:
            return

        f.seek(0)
        payload = f.read(self.header.boot_image_length)
        if len(payload) != self.header.boot_image_length:
            raise BootImageError("Short read: got {} of {} bytes".format(
                len(payload), self.header.boot_image_length))

        digest = hashlib.sha384(payload).digest()
        assert len(digest) == DIGEST_LEN
        self.header.digest = digest
        log.debug("SHA384: %s", digest.hex())

        signature = key.sign_digest(digest)
        assert len(signature) == SIG_LEN
        self.header.signature = signature
        log.debug("P-384 signature: %s", signature.hex())

        # rewrite header for signing
        self._generate_header(f)

    @staticmethod
    def verify(imgfile, key=None):
        """Check an image file.  Returns the result and the parsed image
        (None when the image could not be parsed)."""
        try:
            with open(imgfile, 'rb') as f:
                b = f.read()
        except FileNotFoundError:
            raise BootImageError("Image file not found ({})".format(imgfile))

        if detect_endian(b) is None:
            return VerifyResult.INVALID_MAGIC, None
        if len(b) < IMAGE_HEADER_SIZE:
            return VerifyResult.INVALID_LENGTH, None
        try:
            parsed = read_image(b)
        except BootImageError:
            return VerifyResult.INVALID_LAYOUT, None
        header = parsed.header

        if header.boot_image_length != len(b):
            return VerifyResult.INVALID_LENGTH, parsed
        if not check_layout(parsed):
            return VerifyResult.INVALID_LAYOUT, parsed
        if header_crc(b) != header.header_crc:
            return VerifyResult.INVALID_CRC, parsed

        if key is None:
            return VerifyResult.OK, parsed
        if not header.is_signed:
            return VerifyResult.UNSIGNED, parsed
        if image_digest(b, header.boot_image_length) != header.digest:
            return VerifyResult.INVALID_HASH, parsed
        try:
            key.verify_digest(header.signature, header.digest)
        except InvalidSignature:
            return VerifyResult.INVALID_SIGNATURE, parsed
        return VerifyResult.OK, parsed
