"""Errors raised while classifying a pyc file."""


class PycError(Exception):
  """Base class for errors about the contents of a single pyc file.

  Attributes:
    path: The offending file.
    header: The raw header bytes that were read, for diagnostics.
  """

  _reason = "bad pyc file"

  def __init__(self, path, header):
    super().__init__(f"{path}: {self._reason} ({bytes(header)!r})")
    self.path = path
    self.header = bytes(header)


class TruncatedInput(PycError):
  """Fewer than four header bytes were available."""

  _reason = "truncated pyc header"


class NotAPycFile(PycError):
  """The header does not end with the fixed \\r\\n trailer."""

  _reason = "not a pyc file, wrong magic"


class UnknownPycVersion(PycError):
  """The magic number is neither a known legacy code nor in a known range."""

  _reason = "not a pyc file, unknown version"
