"""File and path utilities."""

import contextlib
import glob
import os
import shutil
import tempfile
import textwrap


def replace_extension(filename, new_extension):
  name, _ = os.path.splitext(filename)
  if new_extension.startswith("."):
    return name + new_extension
  else:
    return name + "." + new_extension


def makedirs(path):
  """Create a nested directory, but don't fail if any of it already exists."""
  os.makedirs(path, exist_ok=True)


def remove_if_exists(path):
  """Delete a file. Returns True if there was something to delete."""
  try:
    os.remove(path)
  except FileNotFoundError:
    return False
  return True


def replace_file(src, dst):
  """Atomically move src over dst, keeping dst's mode and timestamps.

  os.replace() is atomic when src and dst are on the same filesystem, so
  readers of dst see either the old or the new contents, never a mix. If
  anything fails before the rename, dst is untouched.

  Args:
    src: The replacement file. It no longer exists afterwards.
    dst: The file to replace.
  """
  shutil.copystat(dst, src)
  os.replace(src, dst)


class Tempdir:
  """Context handler for creating temporary directories."""

  def __enter__(self):
    self.path = tempfile.mkdtemp()
    return self

  def create_directory(self, filename):
    """Create a subdirectory in the temporary directory."""
    path = os.path.join(self.path, filename)
    makedirs(path)
    return path

  def create_file(self, filename, indented_data=None):
    """Create a file in the temporary directory. Dedents the data if needed."""
    filedir, filename = os.path.split(filename)
    if filedir:
      self.create_directory(filedir)
    path = os.path.join(self.path, filedir, filename)
    if isinstance(indented_data, bytes):
      # This is binary data rather than text.
      mode = "wb"
      data = indented_data
    else:
      mode = "w"
      data = textwrap.dedent(indented_data) if indented_data else indented_data
    with open(path, mode) as fi:
      if data:
        fi.write(data)
    return path

  def __exit__(self, error_type, value, tb):
    shutil.rmtree(path=self.path)
    return False  # reraise any exceptions

  def __getitem__(self, filename):
    """Get the full path for an entry in this directory."""
    return os.path.join(self.path, filename)


@contextlib.contextmanager
def cd(path):
  """Context manager. Change the directory, and restore it afterwards.

  Example usage:
    with cd("/path"):
      ...

  Arguments:
    path: The directory to change to. If empty, this function is a no-op.
  Yields:
    Executes your code, in a changed directory.
  """
  if not path:
    yield
    return
  curdir = os.getcwd()
  os.chdir(path)
  try:
    yield
  finally:
    os.chdir(curdir)


def expand_path(path, cwd=None):
  """Fully expand a path, optionally with an explicit cwd."""

  expand = lambda path: os.path.realpath(os.path.expanduser(path))
  with cd(cwd):
    return expand(path)


def expand_paths(paths, cwd=None):
  """Fully expand a list of paths, optionally with an explicit cwd."""
  return [expand_path(x, cwd) for x in paths]


def expand_globpaths(globpaths, cwd=None):
  """Expand a list of glob expressions into a list of full paths."""
  with cd(cwd):
    paths = sum((glob.glob(p, recursive=True) for p in globpaths), [])
  return expand_paths(paths, cwd)


def expand_source_files(filenames, predicate, cwd=None):
  """Expand a list of filenames passed in as inputs.

  This is a helper function for handling command line arguments that specify a
  list of files and directories.

  Any directories in filenames will be scanned recursively for files accepted
  by predicate. Other files are dropped unless predicate accepts them.

  Args:
    filenames: A list of filenames, directories or glob expressions.
    predicate: A function from a path to a bool, selecting the files to keep.
    cwd: An optional working directory to expand relative paths
  Returns:
    A set of full paths
  """
  out = []
  for f in expand_globpaths(filenames, cwd):
    if os.path.isdir(f):
      out += [p for p in glob.glob(os.path.join(f, "**", "*"), recursive=True)
              if os.path.isfile(p) and predicate(p)]
    elif predicate(f):
      out.append(f)
  return set(out)
