#!/usr/bin/env python3
# Convert an MPFS image to a C array for embedding in firmware
import argparse
import configparser
import enum
import logging
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

__version__ = "1.0.0"

DEFAULT_MAX_SIZE = 2 * 1024 * 1024
DEFAULT_VAR_NAME = "MPFS_Start"
STDOUT = "-"
BYTES_PER_LINE = 16

# Bytes rendered as character literals; everything else becomes 0xNN.
# Quote, backslash and double quote always render as hex.
PRINTABLE = frozenset(
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "0123456789"
    " !#$%&()*+,-./:;<=>?@[]^_{|}~"
)

DOCUMENT_TEMPLATE = """\
/***************************************************************
 * {out_name}
 * Defines an MPFS2 image to be stored in program memory.
 *
 * NOT FOR HAND MODIFICATION
 * This file is automatically generated by mpfs2c.
 * ALL MODIFICATIONS WILL BE OVERWRITTEN BY THE GENERATOR.
 *
 * Source: {src_name}
 * Generated {timestamp}
 ***************************************************************/
#define __MPFSIMG_C

#include "TCPIP Stack/TCPIP.h"

#if defined(STACK_USE_MPFS2) && !defined(MPFS_USE_EEPROM) && !defined(MPFS_USE_SPI_FLASH)

ROM BYTE {var_name}[] =
{body}

#endif
"""

INFO_TEXT = f"""\
mpfs2c {__version__}
Converts an MPFS image into a C source file holding the image as a
ROM BYTE array, 16 bytes per line with offset comments.

Defaults:
  output     <input without extension>.c ('-' writes to stdout)
  max size   {DEFAULT_MAX_SIZE} bytes
  variable   {DEFAULT_VAR_NAME}"""

TIMESTAMP_FORMAT = "%a %b %d %Y %H:%M:%S"

# Settings for the PlatformIO hook: env var MPFS_<KEY>, then [mpfs2c] in platformio.ini
HOOK_DEFAULTS = {
    'image': 'mpfs.bin',
    'output': 'MPFSImg.c',
    'var_name': DEFAULT_VAR_NAME,
    'max_size': str(DEFAULT_MAX_SIZE),
}

_IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_OFFSET_RE = re.compile(r"^/\*[0-9a-f]{4,}\*/")
_ELEMENT_RE = re.compile(r"'(.)'|0x([0-9a-fA-F]{2})")


class ErrorKind(enum.Enum):
    MISSING_ARGUMENT = "missing argument"
    NOT_READABLE = "not readable"
    TOO_LARGE = "too large"
    READ_ERROR = "read error"
    INVALID_BYTE = "invalid byte"
    OUTPUT_COLLISION = "output collision"
    WRITE_ERROR = "write error"
    INVALID_SETTING = "invalid setting"


class Mpfs2cError(Exception):
    """A fatal conversion failure, tagged with the stage that hit it."""

    def __init__(self, kind, message):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self):
        return self.message


@dataclass(frozen=True)
class Config:
    input_path: str
    output_path: Optional[str] = None
    max_size: int = DEFAULT_MAX_SIZE
    var_name: str = DEFAULT_VAR_NAME
    verbose: bool = False

    @property
    def resolved_output(self):
        return self.output_path or default_output_path(self.input_path)


def default_output_path(input_path):
    return os.path.splitext(input_path)[0] + '.c'


def load_image(path, max_size=DEFAULT_MAX_SIZE):
    if not os.path.isfile(path) or not os.access(path, os.R_OK):
        raise Mpfs2cError(ErrorKind.NOT_READABLE, f"Cannot read image file: {path}")
    size = os.path.getsize(path)
    if size > max_size:
        raise Mpfs2cError(ErrorKind.TOO_LARGE,
                          f"Image file {path} is {size} bytes, maximum is {max_size}")
    try:
        with open(path, 'rb') as f:
            data = f.read(max_size + 1)
    except OSError as e:
        raise Mpfs2cError(ErrorKind.READ_ERROR, f"Failed to read {path}: {e}") from e
    # File grew between the size check and the read
    if len(data) > max_size:
        raise Mpfs2cError(ErrorKind.TOO_LARGE,
                          f"Image file {path} exceeds maximum of {max_size} bytes")
    return data


def render_byte(value):
    if not 0 <= value <= 255:
        raise Mpfs2cError(ErrorKind.INVALID_BYTE, f"Byte value out of range: {value}")
    ch = chr(value)
    if ch in PRINTABLE:
        return f" '{ch}'"
    return f"0x{value:02x}"


def render_literal(data):
    """Render bytes as a brace-wrapped initializer, one offset-tagged line per 16 bytes.

    Every element is followed by a comma except the last one of the whole
    sequence.
    """
    data = list(data)
    lines = ['{']
    for offset in range(0, len(data), BYTES_PER_LINE):
        chunk = data[offset:offset + BYTES_PER_LINE]
        elements = ','.join(render_byte(b) for b in chunk)
        if offset + BYTES_PER_LINE < len(data):
            elements += ','
        lines.append(f"/*{offset:04x}*/ {elements}")
    lines.append('};')
    return '\n'.join(lines)


def parse_literal(text):
    """Recover the bytes from text produced by render_literal."""
    data = bytearray()
    for line in text.splitlines():
        match = _OFFSET_RE.match(line)
        if not match:
            continue
        elements = line[match.end():]
        for ch, hex_digits in _ELEMENT_RE.findall(elements):
            data.append(ord(ch) if ch else int(hex_digits, 16))
    return bytes(data)


def check_collision(input_path, output_path):
    if output_path == STDOUT:
        return
    same = (os.path.normcase(os.path.realpath(input_path))
            == os.path.normcase(os.path.realpath(output_path)))
    if same:
        raise Mpfs2cError(ErrorKind.OUTPUT_COLLISION,
                          f"Output file {output_path} would overwrite input file {input_path}")


def header_name(path):
    """Base name of path, with undecodable file name bytes shown as \\xNN."""
    return os.fsencode(os.path.basename(path)).decode('utf-8', 'backslashreplace')


def build_document(body, var_name, input_path, output_path, now=None):
    now = now or datetime.now()
    out_name = 'stdout' if output_path == STDOUT else header_name(output_path)
    return DOCUMENT_TEMPLATE.format(
        out_name=out_name,
        src_name=header_name(input_path),
        timestamp=now.strftime(TIMESTAMP_FORMAT),
        var_name=var_name,
        body=body,
    )


def write_document(document, output_path):
    try:
        if output_path == STDOUT:
            sys.stdout.write(document)
            sys.stdout.flush()
        else:
            with open(output_path, 'w', encoding='utf-8', newline='\n') as out:
                out.write(document)
    except (OSError, UnicodeError) as e:
        raise Mpfs2cError(ErrorKind.WRITE_ERROR, f"Failed to write {output_path}: {e}") from e


def convert(config, now=None):
    output_path = config.resolved_output
    logging.info(f"Embedding: {config.input_path} -> {output_path} (var: {config.var_name})")
    check_collision(config.input_path, output_path)
    data = load_image(config.input_path, config.max_size)
    logging.debug(f"Loaded {len(data)} bytes from {config.input_path}")
    body = render_literal(data)
    document = build_document(body, config.var_name, config.input_path, output_path, now)
    write_document(document, output_path)
    logging.info(f"Success: {output_path}")


def env_flag(name, environ=None):
    environ = os.environ if environ is None else environ
    return environ.get(name, '0').lower() in ('1', 'true', 'yes', 'on')


def hook_settings(project_dir, environ=None):
    environ = os.environ if environ is None else environ
    config = configparser.ConfigParser()
    config.read(os.path.join(project_dir, 'platformio.ini'))
    settings = {}
    for key, default in HOOK_DEFAULTS.items():
        value = environ.get(f"MPFS_{key.upper()}")
        if value is None:
            value = config.get('mpfs2c', key, fallback=default)
        settings[key] = value
    try:
        settings['max_size'] = parse_size_limit(settings['max_size'])
        settings['var_name'] = check_identifier(settings['var_name'])
    except ValueError as e:
        raise Mpfs2cError(ErrorKind.INVALID_SETTING, f"Invalid MPFS setting: {e}") from e
    return settings


def needs_update(image_path, out_path, force=False):
    """True when out_path is missing or older than image_path."""
    if force or not os.path.exists(out_path):
        return True
    image_mtime = os.path.getmtime(image_path)
    return image_mtime > os.path.getmtime(out_path)


def parse_size_limit(text):
    try:
        value = int(text, 0)
    except ValueError:
        raise ValueError(f"max size is not an integer: {text}")
    if value < 0:
        raise ValueError(f"max size must not be negative: {text}")
    return value


def check_identifier(text):
    if not _IDENTIFIER_RE.match(text):
        raise ValueError(f"not a valid C identifier: {text}")
    return text


def _argument_type(check):
    def convert_argument(text):
        try:
            return check(text)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e))
    return convert_argument


def build_parser():
    parser = argparse.ArgumentParser(
        prog='mpfs2c',
        description='Convert an MPFS image to a C array for embedding in firmware')
    parser.add_argument('input', metavar='IMAGE', nargs='?', help='MPFS image file to embed')
    parser.add_argument('-o', '--output', metavar='FILE',
                        help="output C file (default: IMAGE with a .c extension, '-' for stdout)")
    parser.add_argument('-s', '--max-size', metavar='BYTES', type=_argument_type(parse_size_limit),
                        default=DEFAULT_MAX_SIZE,
                        help=f'maximum image size in bytes, 0 allows only empty images '
                             f'(default: {DEFAULT_MAX_SIZE})')
    parser.add_argument('-n', '--name', metavar='VAR', type=_argument_type(check_identifier),
                        default=DEFAULT_VAR_NAME,
                        help=f'name of the generated array (default: {DEFAULT_VAR_NAME})')
    parser.add_argument('-v', '--verbose', action='store_true', help='log debug output')
    parser.add_argument('-i', '--info', action='store_true', help='show tool information and exit')
    parser.add_argument('-V', '--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(format='[mpfs2c] %(message)s')
    logging.getLogger().setLevel(logging.DEBUG if args.verbose else logging.INFO)
    if args.info:
        print(INFO_TEXT)
        return 0
    try:
        if args.input is None:
            raise Mpfs2cError(ErrorKind.MISSING_ARGUMENT, "No input image file given")
        config = Config(
            input_path=args.input,
            output_path=args.output,
            max_size=args.max_size,
            var_name=args.name,
            verbose=args.verbose,
        )
        convert(config)
    except Mpfs2cError as e:
        logging.error(f"ERROR: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
