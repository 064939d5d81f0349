"""Python version numbers and their encoding ("magic number")."""

import logging

import attrs

from pycnorm import exceptions


log = logging.getLogger(__name__)

# Every pyc header ends with these two bytes.
TRAILER = b"\r\n"

HEADER_SIZE = 4

# These constants are from Python-3.x.x/Lib/importlib/_bootstrap_external.py
PYTHON_MAGIC = {
    # Python 1
    20121: "1.5",
    50428: "1.6",

    # Python 2
    50823: "2.0",
    60202: "2.1",
    60717: "2.2",
    62011: "2.3",  # a0
    62021: "2.3",  # a0
    62041: "2.4",  # a0
    62051: "2.4",  # a3
    62061: "2.4",  # b1
    62071: "2.5",  # a0
    62081: "2.5",  # a0
    62091: "2.5",  # a0
    62092: "2.5",  # a0
    62101: "2.5",  # b3
    62111: "2.5",  # b3
    62121: "2.5",  # c1
    62131: "2.5",  # c2
    62151: "2.6",  # a0
    62161: "2.6",  # a1
    62171: "2.7",  # a0
    62181: "2.7",  # a0
    62191: "2.7",  # a0
    62201: "2.7",  # a0
    62211: "2.7",  # a0
}

# Inclusive (low, high, version) ranges for Python 3. They are tried in this
# order and the first one containing the magic number wins. Since they all
# start at 3000, a number resolves to the first entry whose upper bound reaches
# it. Keep the order (and the repeated "3.1") as it is: reordering changes
# which label existing files resolve to.
PYTHON_MAGIC_RANGES = (
    (3000, 3131, "3.0"),
    (3000, 3151, "3.1"),
    (3000, 3160, "3.1"),
    (3000, 3180, "3.2"),
    (3000, 3230, "3.3"),
    (3000, 3310, "3.4"),
    (3000, 3351, "3.5"),
    (3000, 3379, "3.6"),
    (3000, 3394, "3.7"),
    (3000, 3413, "3.8"),
    (3000, 3425, "3.9"),
    (3000, 3439, "3.10"),
    (3000, 3495, "3.11"),
    (3000, 3531, "3.12"),
    (3000, 3600, "3.13"),
    (3600, 4000, "3.14+"),
)


@attrs.frozen
class MagicHeader:
  """The first four bytes of a pyc file."""

  raw: bytes = attrs.field(converter=bytes)

  @property
  def magic_word(self):
    return self.raw[:2]

  @property
  def trailer(self):
    return self.raw[2:HEADER_SIZE]


def read_header(data, path):
  """Take the magic header from the start of a pyc file's contents.

  Args:
    data: The file contents, or at least their first four bytes.
    path: The file name, used in error messages.

  Returns:
    A MagicHeader.

  Raises:
    TruncatedInput: If fewer than four bytes are available.
  """
  if len(data) < HEADER_SIZE:
    raise exceptions.TruncatedInput(path, data)
  return MagicHeader(data[:HEADER_SIZE])


def read_header_from_file(path):
  with open(path, "rb") as fi:
    return read_header(fi.read(HEADER_SIZE), path)


def magic_word_to_code(magic_word):
  """Decode the little-endian 16 bit magic number."""
  return (magic_word[1] << 8) + magic_word[0]


def code_to_version(code):
  """Return the version label for a magic number, or None if it is unknown."""
  version = PYTHON_MAGIC.get(code)
  if version is not None:
    return version
  for low, high, version in PYTHON_MAGIC_RANGES:
    if low <= code <= high:
      return version
  return None


def resolve_version(header, path):
  """Return the Python version belonging to the magic number in the pyc head.

  Arguments:
    header: A MagicHeader.
    path: The file name, used in error messages.

  Returns:
    A version label such as "2.7", "3.12" or "3.14+".

  Raises:
    NotAPycFile: If the header does not end with \\r\\n.
    UnknownPycVersion: If the magic number is not known.
  """
  if header.trailer != TRAILER:
    raise exceptions.NotAPycFile(path, header.raw)
  version = code_to_version(magic_word_to_code(header.magic_word))
  if version is None:
    raise exceptions.UnknownPycVersion(path, header.raw)
  return version


def is_eligible(version):
  """Python 2 bytecode is left alone; everything newer gets normalized."""
  return not version.startswith("2")



def verify_python3_pyc(path, header):
  """Check that the pyc header belongs to a file we should normalize.

  Args:
    path: The file name, used in messages.
    header: A MagicHeader.

  Returns:
    True if the file was written by Python 3 (or, for that matter, 1.x),
    False for Python 2.

  Raises:
    NotAPycFile: If the header does not end with \\r\\n.
    UnknownPycVersion: If the magic number is not known.
  """
  version = resolve_version(header, path)
  log.debug("%s: pyc file for Python %s", path, version)
  return is_eligible(version)
