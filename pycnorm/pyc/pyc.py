"""Functions for reading and rewriting pyc files."""

import logging

from pycnorm import file_utils
from pycnorm import utils
from pycnorm.pyc import fixmarshal
from pycnorm.pyc import magic


log = logging.getLogger(__name__)

# A normalized copy of foo.pyc is written to foo.fixed.pyc.
FIXED_EXTENSION = "fixed.pyc"

# Marshal data only carries reference flags from Python 3.4 on.
MIN_REF_VERSION = (3, 4)


def fixed_path(path):
  return file_utils.replace_extension(path, FIXED_EXTENSION)


def header_size(python_version):
  """Number of bytes in front of the marshal data in a pyc file.

  Args:
    python_version: Python version, (major, minor).

  Returns:
    8 (magic, mtime) before Python 3.3, 12 (magic, mtime, source size) for
    3.3 - 3.6 and 16 (magic, flags, mtime or hash) from 3.7 on (PEP 552).
  """
  if python_version >= (3, 7):
    return 16
  elif python_version >= (3, 3):
    return 12
  else:
    return 8


def split_pyc_string(data, python_version):
  """Split pyc data into its header and its marshal data.

  Raises:
    EOFError: If the data is shorter than the header.
  """
  n = header_size(python_version)
  if len(data) < n:
    raise EOFError(f"pyc data too short for a Python "
                   f"{utils.format_version(python_version)} header")
  return data[:n], data[n:]


def fix_pyc_string(data, python_version):
  """Return pyc data with its unused marshal reference flags cleared."""
  header, body = split_pyc_string(data, python_version)
  return header + fixmarshal.clear_unused_ref_flags(body, python_version)


def fix_pyc_file(path, python_version=None):
  """Normalize the pyc file at path, writing the result next to it.

  The original file is never written to. If normalization changes anything,
  the result is stored at fixed_path(path); otherwise no file is created.

  Args:
    path: The pyc file.
    python_version: Python version, (major, minor). If None, it is taken from
      the file's magic number.

  Returns:
    True if a normalized copy was written, False if the file was unchanged.
    Files written by interpreters older than MIN_REF_VERSION are always left
    unchanged.

  Raises:
    OSError: If the file can't be read or the copy can't be written.
    ValueError, EOFError, BufferError: If the marshal data is malformed.
  """
  with open(path, "rb") as fi:
    data = fi.read()
  if python_version is None:
    header = magic.read_header(data, path)
    python_version = utils.version_from_string(
        magic.resolve_version(header, path))
  if python_version < MIN_REF_VERSION:
    log.debug("%s: no reference flags before Python %s", path,
              utils.format_version(MIN_REF_VERSION))
    return False
  fixed = fix_pyc_string(data, python_version)
  if fixed == data:
    return False
  out = fixed_path(path)
  log.debug("%s: writing normalized copy to %s", path, out)
  with open(out, "wb") as fo:
    fo.write(fixed)
  return True
