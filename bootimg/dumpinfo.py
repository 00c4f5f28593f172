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
Parse and print header, descriptor tables and blob map of a boot image.
"""
import os.path

import click
import yaml

from bootimg import image
from bootimg.layout import calculate_padding

HEADER_ITEMS = ("magic", "version", "header_length", "header_crc",
                "chunk_table_offset", "zi_chunk_table_offset", "set_name",
                "boot_image_length")
_LINE_LENGTH = 60


def print_in_frame(header_text, content):
    sepc = " "
    header = "#### " + header_text + sepc
    post_header = "#" * (_LINE_LENGTH - len(header))
    print(header + post_header)

    print("|", sepc * (_LINE_LENGTH - 2), "|", sep="")
    offset = (_LINE_LENGTH - len(content)) // 2
    pre = "|" + (sepc * (offset - 1))
    post = sepc * (_LINE_LENGTH - len(pre) - len(content) - 1) + "|"
    print(pre, content, post, sep="")
    print("|", sepc * (_LINE_LENGTH - 2), "|", sep="")
    print("#" * _LINE_LENGTH)


def print_in_row(row_text):
    row_text = "#### " + row_text + " "
    fill = "#" * (_LINE_LENGTH - len(row_text))
    print(row_text + fill)


def print_hex_block(name, data):
    indent = _LINE_LENGTH // 8
    print(" " * indent, "{}: ".format(name), end="")
    for j, byte in enumerate(data):
        print("{0:#04x}".format(byte), end=" ")
        if ((j + 1) % 8 == 0) and ((j + 1) != len(data)):
            print("\n", end=" " * (indent + len(name) + 3))
    print()


def print_descriptors(entries):
    indent = _LINE_LENGTH // 8
    for i, entry in enumerate(entries):
        print(" " * indent, "-" * 45)
        print(" " * indent, "index:", i)
        for field, value in entry._asdict().items():
            print(" " * indent, "{}:".format(field),
                  " " * (10 - len(field)), hex(value))


def image_info(parsed):
    """Collect the parsed image into plain data, ready for YAML output."""
    header = {}
    for key in HEADER_ITEMS:
        header[key] = getattr(parsed.header, key)
    header["set_name"] = header["set_name"].decode("utf-8", "replace")

    signature = {"digest": parsed.header.digest.hex(),
                 "ecdsa_sig": parsed.header.signature.hex()}

    return {"endian": parsed.endian,
            "header": header,
            "signature": signature,
            "chunks": [c._asdict() for c in parsed.chunks],
            "zi_chunks": [z._asdict() for z in parsed.zi_chunks]}


def dump_imginfo(imgfile, outfile=None, silent=False):
    """Parse a boot image and print/save the available information."""
    try:
        with open(imgfile, "rb") as f:
            b = f.read()
    except FileNotFoundError:
        raise click.UsageError("Image file not found ({})".format(imgfile))

    parsed = image.read_image(b)
    imgdata = image_info(parsed)

    # Generating output yaml file
    if outfile is not None:
        with open(outfile, "w") as outf:
            # sort_keys - from pyyaml 5.1
            yaml.dump(imgdata, outf, sort_keys=False)

    if silent:
        return

    print("Printing content of boot image:", os.path.basename(imgfile), "\n")

    # Image header
    section_name = "Image header (offset: 0x0)"
    print_in_row(section_name)
    for key, value in imgdata["header"].items():
        if not isinstance(value, str):
            value = hex(value)
        print(key, ":", " " * (22 - len(key)), value, sep="")
    print("endian:", " " * 16, parsed.endian, sep="")
    if parsed.header.is_signed:
        print_hex_block("digest", parsed.header.digest)
        print_hex_block("ecdsa_sig", parsed.header.signature)
    else:
        print("signature:", " " * 13, "none", sep="")
    print("#" * _LINE_LENGTH)

    # Descriptor tables
    section_name = "Chunk table (offset: {})".format(
        hex(parsed.header.chunk_table_offset))
    print_in_row(section_name)
    print("entries:", len(parsed.chunks))
    print_descriptors(parsed.chunks)
    print("#" * _LINE_LENGTH)

    section_name = "ZI chunk table (offset: {})".format(
        hex(parsed.header.zi_chunk_table_offset))
    print_in_row(section_name)
    print("entries:", len(parsed.zi_chunks))
    print_descriptors(parsed.zi_chunks)
    print("#" * _LINE_LENGTH)

    # Blobs
    for i, chunk in enumerate(parsed.chunks):
        frame_header_text = "Blob {} (offset: {})".format(
            i, hex(chunk.load_addr))
        frame_content = "chunk data (size: {} Bytes, pad: {})".format(
            hex(chunk.size), calculate_padding(chunk.size))
        print_in_frame(frame_header_text, frame_content)

    footer = "End of Image (offset: {}) ".format(
        hex(parsed.header.boot_image_length))
    print_in_row(footer)
