#! /usr/bin/env python3
#
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

import getpass
import logging
import sys

import click

import bootimg.keys as keys
from bootimg import image, bootimg_version
from bootimg.dumpinfo import dump_imginfo
from .keys import ECDSAUsageError

MIN_PYTHON_VERSION = (3, 8)
if sys.version_info < MIN_PYTHON_VERSION:
    sys.exit("Python %s.%s or newer is required by bootimg."
             % MIN_PYTHON_VERSION)


def gen_ecdsa_p384(keyfile, passwd):
    keys.ECDSA384P1.generate().export_private(keyfile, passwd=passwd)


valid_hash_encodings = ['lang-c', 'raw']
valid_encodings = ['lang-c', 'pem', 'raw']
keygens = {
    'ecdsa-p384': gen_ecdsa_p384,
}
valid_formats = ['openssl', 'pkcs8']

verify_messages = {
    image.VerifyResult.INVALID_MAGIC:
        "Invalid image magic; is this a boot image?",
    image.VerifyResult.INVALID_LENGTH:
        "Image length does not match the header",
    image.VerifyResult.INVALID_LAYOUT:
        "Image tables do not match the layout rules",
    image.VerifyResult.INVALID_CRC:
        "Image header has an invalid CRC",
    image.VerifyResult.INVALID_HASH:
        "Image has an invalid hash",
    image.VerifyResult.INVALID_SIGNATURE:
        "Signature does not match the given key",
    image.VerifyResult.UNSIGNED:
        "Image is not signed",
}


def load_key(keyfile):
    try:
        key = keys.load(keyfile)
        if key is not None:
            return key
        passwd = getpass.getpass("Enter key passphrase: ").encode('utf-8')
        return keys.load(keyfile, passwd)
    except FileNotFoundError:
        raise click.UsageError("Key file not found ({})".format(keyfile))
    except (ECDSAUsageError, ValueError) as e:
        raise click.UsageError("Unusable key {}: {}".format(keyfile, e))


def get_password():
    while True:
        passwd = getpass.getpass("Enter key passphrase: ")
        passwd2 = getpass.getpass("Reenter passphrase: ")
        if passwd == passwd2:
            break
        print("Passwords do not match, try again")

    # Password must be bytes, always use UTF-8 for consistent
    # encoding.
    return passwd.encode('utf-8')


@click.option('-p', '--password', is_flag=True,
              help='Prompt for password to protect key')
@click.option('-t', '--type', metavar='type', default='ecdsa-p384',
              type=click.Choice(keygens.keys()),
              help='{}'.format('One of: {}'.format(', '.join(keygens.keys()))))
@click.option('-k', '--key', metavar='filename', required=True)
@click.command(help='Generate pub/private keypair')
def keygen(type, key, password):
    password = get_password() if password else None
    keygens[type](key, password)


@click.option('-e', '--encoding', metavar='encoding',
              type=click.Choice(valid_encodings), default=valid_encodings[0],
              help='Valid encodings: {}'.format(', '.join(valid_encodings)))
@click.option('-k', '--key', metavar='filename', required=True)
@click.option('-o', '--output', metavar='output', required=False,
              help='Specify the output file\'s name. \
                    The stdout is used if it is not provided.')
@click.command(help='Dump public key from keypair')
def getpub(key, encoding, output):
    key = load_key(key)

    if not output:
        output = sys.stdout
    if key is None:
        print("Invalid passphrase")
    elif encoding == 'lang-c':
        key.emit_c_public(file=output)
    elif encoding == 'pem':
        key.emit_public_pem(file=output)
    elif encoding == 'raw':
        key.emit_raw_public(file=output)
    else:
        raise click.UsageError()


@click.option('-e', '--encoding', metavar='encoding',
              type=click.Choice(valid_hash_encodings),
              help='Valid encodings: {}. '
                   'Default value is {}.'
                   .format(', '.join(valid_hash_encodings),
                           valid_hash_encodings[0]))
@click.option('-k', '--key', metavar='filename', required=True)
@click.option('-o', '--output', metavar='output', required=False,
              help='Specify the output file\'s name. \
                    The stdout is used if it is not provided.')
@click.command(help='Dump the SHA256 hash of the public key')
def getpubhash(key, output, encoding):
    if not encoding:
        encoding = valid_hash_encodings[0]
    key = load_key(key)

    if not output:
        output = sys.stdout
    if key is None:
        print("Invalid passphrase")
    elif encoding == 'lang-c':
        key.emit_c_public_hash(file=output)
    elif encoding == 'raw':
        key.emit_raw_public_hash(file=output)
    else:
        raise click.UsageError()


@click.option('-k', '--key', metavar='filename', required=True)
@click.option('-f', '--format',
              type=click.Choice(valid_formats),
              help='Valid formats: {}'.format(', '.join(valid_formats))
              )
@click.command(help='Dump private key from keypair')
def getpriv(key, format):
    key = load_key(key)
    if key is None:
        print("Invalid passphrase")
        sys.exit(1)
    try:
        key.emit_private(False, format)
    except ECDSAUsageError as e:
        raise click.UsageError(e)


@click.argument('imgfile')
@click.option('-k', '--key', metavar='filename')
@click.command(help="Check the header CRC of a boot image and, if a key is "
                    "given, its digest and signature")
def verify(key, imgfile):
    key = load_key(key) if key else None
    ret, parsed = image.Image.verify(imgfile, key)
    if ret == image.VerifyResult.OK:
        header = parsed.header
        print("Image was correctly validated")
        print("Image length: {}".format(header.boot_image_length))
        print("Image chunks: {} ({} ZI)".format(len(parsed.chunks),
                                                 len(parsed.zi_chunks)))
        print("Header CRC: 0x{:08x}".format(header.header_crc))
        if key is not None:
            print("Image digest: {}".format(header.digest.hex()))
        return
    print(verify_messages.get(ret, "Unknown return code: {}".format(ret)))
    sys.exit(1)


@click.argument('imgfile')
@click.option('-o', '--outfile', metavar='filename', required=False,
              help='Save image information to outfile in YAML format')
@click.option('-s', '--silent', default=False, is_flag=True,
              help='Do not print image information to output')
@click.command(help='Print header, descriptor tables and blob layout '
                    'of a boot image')
def dumpinfo(imgfile, outfile, silent):
    dump_imginfo(imgfile, outfile, silent)
    if not silent:
        print("dumpinfo has run successfully")


class BasedIntParamType(click.ParamType):
    name = 'integer'

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            return value
        try:
            return int(value, 0)
        except ValueError:
            self.fail('%s is not a valid integer. Please use code literals '
                      'prefixed with 0b/0B, 0o/0O, or 0x/0X as necessary.'
                      % value, param, ctx)


@click.argument('outfile')
@click.option('-z', '--zi-chunk', multiple=True,
              type=(BasedIntParamType(), BasedIntParamType(),
                    BasedIntParamType()),
              metavar='OWNER ADDR SIZE',
              help='Add a zero-initialized region. '
                   'Specify the option multiple times to add more regions.')
@click.option('-x', '--hex-chunk', multiple=True,
              type=(BasedIntParamType(), click.Path(dir_okay=False)),
              metavar='OWNER FILE',
              help='Add each contiguous segment of an Intel HEX file as a '
                   'chunk loaded at the segment address. Added after the '
                   '--chunk entries.')
@click.option('-c', '--chunk', multiple=True,
              type=(BasedIntParamType(), BasedIntParamType(),
                    click.Path(dir_okay=False)),
              metavar='OWNER ADDR FILE',
              help='Add the contents of a binary file as a chunk executed at '
                   'ADDR. Specify the option multiple times to add more '
                   'chunks.')
@click.option('-n', '--set-name', default='',
              help='Name of the image set stored in the header')
@click.option('-e', '--endian', type=click.Choice(['little', 'big']),
              default='little', help="Select little or big endian")
@click.option('-k', '--key', metavar='filename',
              help='ECDSA P-384 private key used to sign the image. '
                   'Without it the image only carries a header CRC.')
@click.command(help='''Create a boot image from code/data chunks and
               zero-initialized regions\n
               OUTFILE is always written in binary format''')
def create(key, endian, set_name, chunk, hex_chunk, zi_chunk, outfile):
    img = image.Image(endian=endian, set_name=set_name)
    for owner, addr, path in chunk:
        img.load_chunk(owner, addr, path)
    for owner, path in hex_chunk:
        img.load_hex(owner, path)
    for owner, addr, size in zi_chunk:
        img.add_zi_chunk(owner, addr, size)

    key = load_key(key) if key else None
    img.write(outfile, key)
    print("Wrote {} ({} bytes, {} chunks, {} ZI chunks)".format(
        outfile, img.header.boot_image_length, len(img.chunks),
        len(img.zi_chunks)))


class AliasesGroup(click.Group):

    _aliases = {
        "sign": "create",
    }

    def list_commands(self, ctx):
        cmds = [k for k in self.commands]
        aliases = [k for k in self._aliases]
        return sorted(cmds + aliases)

    def get_command(self, ctx, cmd_name):
        rv = click.Group.get_command(self, ctx, cmd_name)
        if rv is not None:
            return rv
        if cmd_name in self._aliases:
            return click.Group.get_command(self, ctx, self._aliases[cmd_name])
        return None


@click.command(help='Print bootimg version information')
def version():
    print(bootimg_version)


@click.option('-v', '--verbose', count=True,
              help='Log progress; repeat for per-chunk details')
@click.command(cls=AliasesGroup,
               context_settings=dict(help_option_names=['-h', '--help']))
def bootimg(verbose):
    if verbose:
        level = logging.INFO if verbose == 1 else logging.DEBUG
        logging.basicConfig(level=level,
                            format="%(levelname)-5s %(message)s")


bootimg.add_command(keygen)
bootimg.add_command(getpub)
bootimg.add_command(getpubhash)
bootimg.add_command(getpriv)
bootimg.add_command(verify)
bootimg.add_command(create)
bootimg.add_command(version)
bootimg.add_command(dumpinfo)


if __name__ == '__main__':
    bootimg()
