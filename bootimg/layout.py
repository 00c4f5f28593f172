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
Offset and padding arithmetic for boot images.

Nothing in here touches a file: the serializer uses these helpers to
predict where each section must start, and readers use them to walk an
existing image.
"""

PAD_SIZE = 8

# Descriptor sizes, see image.CHUNK_FMT and image.ZI_CHUNK_FMT
CHUNK_DESC_SIZE = 40
ZI_CHUNK_DESC_SIZE = 24


def calculate_padding(size, pad=PAD_SIZE):
    """Return the number of bytes needed to bring size up to a multiple
    of pad."""
    assert pad, "padding boundary must be non-zero"
    return (((size + (pad - 1)) // pad) * pad) - size


def padded(size, pad=PAD_SIZE):
    return size + calculate_padding(size, pad)


def table_size(entry_size, count):
    """Padded size of a descriptor table, including its sentinel."""
    return padded(entry_size * (count + 1))


def chunk_table_offset(header_size):
    return padded(header_size)


def zi_chunk_table_offset(header_size, num_chunks):
    return (chunk_table_offset(header_size)
            + table_size(CHUNK_DESC_SIZE, num_chunks))


def blob_region_offset(header_size, num_chunks, num_zi_chunks):
    """Offset of the first blob, which is also the header length."""
    return (zi_chunk_table_offset(header_size, num_chunks)
            + table_size(ZI_CHUNK_DESC_SIZE, num_zi_chunks))


def chunk_load_addresses(header_size, sizes, num_zi_chunks):
    """Return the file offset of every blob, in the order given.

    The address of a blob only depends on the blobs before it.
    """
    base = blob_region_offset(header_size, len(sizes), num_zi_chunks)
    addrs = []
    cumulative = 0
    for size in sizes:
        addrs.append(base + cumulative)
        cumulative += padded(size)
    return addrs


def boot_image_length(header_size, sizes, num_zi_chunks):
    return (blob_region_offset(header_size, len(sizes), num_zi_chunks)
            + sum(padded(size) for size in sizes))
