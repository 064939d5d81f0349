"""Normalization of a single pyc file.

process() takes one file through these steps:

  read header -> resolve version -> check eligibility -> run the fixer
      -> commit the fixer's output, or report the file as unchanged

Any error stops processing of the file and is raised to the caller. The
original file is only ever modified by the final atomic rename, so a failed
or interrupted run can always be retried from scratch.
"""

import enum
import logging
import os

from pycnorm import config
from pycnorm import file_utils
from pycnorm import utils
from pycnorm.pyc import magic
from pycnorm.pyc import pyc


log = logging.getLogger(__name__)


class Outcome(enum.Enum):
  SKIPPED = "skipped"
  UNCHANGED = "unchanged"
  MODIFIED = "modified"


def is_candidate(path):
  """Whether path names a pyc file, judging by its final extension only."""
  _, ext = os.path.splitext(os.fspath(path))
  return ext == ".pyc"


def derived_path(path):
  """Where the fixer leaves the normalized copy of path."""
  return pyc.fixed_path(path)


def process(options, path, fix=None):
  """Normalize the pyc file at path in place.

  Args:
    options: A config.Options object, or None for the defaults. If
      options.check is set, files are never modified, but the return value
      still says whether they would have been.
    path: The pyc file.
    fix: The fixer, a callable (path, python_version) -> bool. It must leave
      path untouched and, if (and only if) it returns True, write the
      normalized contents to derived_path(path). Defaults to
      pyc.fix_pyc_file.

  Returns:
    An Outcome.

  Raises:
    TruncatedInput: If the file is shorter than a pyc header.
    NotAPycFile: If the header doesn't have the pyc trailer.
    UnknownPycVersion: If the magic number is not known.
    OSError: On I/O errors. Errors raised by fix are propagated, too.
  """
  options = options or config.Options.create()
  fix = fix or pyc.fix_pyc_file

  header = magic.read_header_from_file(path)
  if not magic.verify_python3_pyc(path, header):
    return Outcome.SKIPPED
  version = utils.version_from_string(magic.resolve_version(header, path))

  out = derived_path(path)
  if file_utils.remove_if_exists(out):
    log.warning("%s: removed stale %s", path, out)

  log.debug("%s: calling %s", path, getattr(fix, "__name__", fix))
  try:
    modified = fix(path, version)
  except BaseException:
    file_utils.remove_if_exists(out)
    raise

  if not modified:
    file_utils.remove_if_exists(out)
    return Outcome.UNCHANGED
  if not os.path.exists(out):
    raise FileNotFoundError(f"{path}: fixer reported changes but did not "
                            f"write {out}")
  if options.check:
    log.info("%s: would be modified", path)
    os.remove(out)
  else:
    try:
      file_utils.replace_file(out, path)
    except BaseException:
      file_utils.remove_if_exists(out)
      raise
    log.info("%s: normalized", path)
  return Outcome.MODIFIED
