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

"""General key class."""

import hashlib
import sys

AUTOGEN_MESSAGE = "/* Autogenerated by bootimg, do not edit. */"


class FileHandler(object):
    def __init__(self, file, *args, **kwargs):
        self.file_in = sys.stdout if file is None else file
        self.args = args
        self.kwargs = kwargs

    def __enter__(self):
        if isinstance(self.file_in, (str, bytes)):
            self.file = open(self.file_in, *self.args, **self.kwargs)
        elif 'b' in self.args[0] and hasattr(self.file_in, 'buffer'):
            # binary output to a text stream such as stdout
            self.file = self.file_in.buffer
        else:
            self.file = self.file_in
        return self.file

    def __exit__(self, *args):
        if isinstance(self.file_in, (str, bytes)):
            self.file.close()
        else:
            self.file.flush()


class KeyClass(object):
    def _emit(self, header, trailer, encoded_bytes, indent, file=None,
              len_format=None):
        with FileHandler(file, 'w') as file:
            print(AUTOGEN_MESSAGE, file=file)
            print(header, end='', file=file)
            for count, b in enumerate(encoded_bytes):
                if count % 8 == 0:
                    print("\n" + indent, end='', file=file)
                else:
                    print(" ", end='', file=file)
                print("0x{:02x},".format(b), end='', file=file)
            print("\n" + trailer, file=file)
            if len_format is not None:
                print(len_format.format(len(encoded_bytes)), file=file)

    def emit_raw_public(self, file=None):
        with FileHandler(file, 'wb') as file:
            file.write(self.get_public_bytes())

    def emit_c_public(self, file=None):
        self._emit(
                header="const unsigned char {}_pub_key[] = {{"
                       .format(self.shortname()),
                trailer="};",
                encoded_bytes=self.get_public_bytes(),
                indent="    ",
                len_format="const unsigned int {}_pub_key_len = {{}};"
                           .format(self.shortname()),
                file=file)

    def emit_public_pem(self, file=None):
        with FileHandler(file, 'w') as file:
            print(str(self.get_public_pem(), 'utf-8'), file=file, end='')

    def emit_c_public_hash(self, file=None):
        digest = hashlib.sha256(self.get_public_bytes()).digest()
        self._emit(
                header="const unsigned char {}_pub_key_hash[] = {{"
                       .format(self.shortname()),
                trailer="};",
                encoded_bytes=digest,
                indent="    ",
                len_format="const unsigned int {}_pub_key_hash_len = {{}};"
                           .format(self.shortname()),
                file=file)

    def emit_raw_public_hash(self, file=None):
        digest = hashlib.sha256(self.get_public_bytes()).digest()
        with FileHandler(file, 'wb') as file:
            file.write(digest)

    def emit_private(self, minimal, format, file=None):
        self._emit(
                header="const unsigned char enc_priv_key[] = {",
                trailer="};",
                encoded_bytes=self.get_private_bytes(minimal, format),
                indent="    ",
                len_format="const unsigned int enc_priv_key_len = {};",
                file=file)
