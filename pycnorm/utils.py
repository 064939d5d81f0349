"""Generic functions."""


def message(error):
  """A convenience function which extracts a message from an exception.

  Args:
    error: The exception.

  Returns:
    A message string.
  """
  return error.args[0] if error.args else ""


class UsageError(Exception):
  """Raise this for top-level usage errors."""


def format_version(python_version):
  """Format a version tuple into a dotted version string."""
  return ".".join(str(x) for x in python_version)


def version_from_string(version_string):
  """Parse a version label like "3.7" or "3.14+" into a (major, minor) tuple.

  A trailing "+" (used for open-ended labels) is ignored.
  """
  return tuple(map(int, version_string.rstrip("+").split(".")))
