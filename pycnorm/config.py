"""Configuration for pycnorm (mostly derived from the commandline args).

Various parts of pycnorm use the command-line options. This module packages the
options into an Options class.

Defaults for some options can also be set in the [tool.pycnorm] table of a
pyproject.toml file, e.g.

  [tool.pycnorm]
  jobs = 4
  exclude = ["build/**"]

Values given on the command line take precedence.
"""

import argparse
import contextlib
import logging
import os

import toml

from pycnorm import utils


LOG_LEVELS = [logging.CRITICAL, logging.ERROR, logging.WARNING, logging.INFO,
              logging.DEBUG]

CONFIG_FILE = "pyproject.toml"

# Options that can be set in a config file, and their defaults.
FILE_OPTIONS = {
    "check": False,
    "exclude": [],
    "jobs": 1,
    "keep_going": False,
    "verbosity": 1,
}


class PostprocessingError(Exception):
  """Exception raised if Postprocessor.process() fails."""


class Options:
  """Encapsulation of the command-line options."""

  def __init__(self, argv_or_options):
    """Parse and encapsulate the command-line options.

    Args:
      argv_or_options: Either sys.argv[1:] (sys.argv[0] is the main script), or
                       already parsed options object returned by
                       ArgumentParser.parse_args.

    Raises:
      sys.exit(2): bad option or config file.
    """
    argument_parser = make_parser()
    if isinstance(argv_or_options, list):
      options = argument_parser.parse_args(argv_or_options)
    else:
      options = argv_or_options
    try:
      apply_config_file(options)
      Postprocessor(set(vars(options)), options, self).process()
    except PostprocessingError as e:
      argument_parser.error(utils.message(e))

  @classmethod
  def create(cls, *inputs, **kwargs):
    """Create options from kwargs, ignoring any config file."""
    argument_parser = make_parser()
    options = argument_parser.parse_args(list(inputs))
    options.config = ""
    for k, v in kwargs.items():
      setattr(options, k, v)
    return cls(options)

  def __repr__(self):
    return "\n".join(["%s: %r" % (k, v)
                      for k, v in sorted(self.__dict__.items())
                      if not k.startswith("_")])


def make_parser():
  """Use argparse to make a parser for command line options."""
  o = argparse.ArgumentParser(
      usage="%(prog)s [options] input [input ...]",
      description=("Make Python bytecode files (.pyc) reproducible by "
                   "clearing unused marshal reference flags."))

  o.add_argument(
      "inputs", nargs="*",
      help="Files, directories or glob patterns to process")

  o.add_argument(
      "-C", "--check", action="store_true",
      dest="check", default=None,
      help=("Don't modify any files. Only report the ones that would be "
            "changed."))
  o.add_argument(
      "-j", "--jobs", type=str, action="store",
      dest="jobs", default=None,
      help=("Process N files in parallel. 'auto' uses one process per CPU."))
  o.add_argument(
      "-k", "--keep-going", action="store_true",
      dest="keep_going", default=None,
      help="Continue with the remaining files after an error.")
  o.add_argument(
      "--exclude", type=str, action="append",
      dest="exclude", default=None,
      help="Glob pattern of files to skip. Can be given multiple times.")
  o.add_argument(
      "--config", type=str, action="store",
      dest="config", default=None,
      help=("Read defaults from this file. By default, the nearest %s "
            "above the current directory is used. Pass an empty string to "
            "ignore config files." % CONFIG_FILE))
  add_debug_options(o)
  return o


def add_debug_options(o):
  """Add debug options to the given parser."""
  o.add_argument(
      "-v", "--verbosity", type=int, action="store",
      dest="verbosity", default=None,
      help=("Set logging verbosity: "
            "-1=quiet, 0=fatal, 1=error (default), 2=warn, 3=info, 4=debug"))
  o.add_argument(
      "--timestamp-logs", action="store_true",
      dest="timestamp_logs", default=None,
      help=("Add timestamps to the logs"))
  o.add_argument(
      "--show-config", action="store_true",
      dest="show_config", default=None,
      help=("Display all config variables and exit."))
  o.add_argument(
      "--version", action="store_true",
      dest="version", default=None,
      help=("Display pycnorm version and exit."))


def find_config_file(path, filename=CONFIG_FILE):
  """Finds the first instance of filename in a prefix of path."""

  # Make sure path is a directory
  if not os.path.isdir(path):
    path = os.path.dirname(path)

  # Guard against symlink loops and /
  seen = set()
  while path and path not in seen:
    seen.add(path)
    f = os.path.join(path, filename)
    if os.path.isfile(f):
      return f
    path = os.path.dirname(path)

  return None


def read_config_file(filepath):
  """Read the [tool.pycnorm] table of a TOML file.

  Returns:
    A dict, empty if the file has no such table.

  Raises:
    PostprocessingError: If the file can't be parsed or has unknown keys.
  """
  try:
    with open(filepath, encoding="utf-8") as fi:
      data = toml.load(fi)
  except (OSError, toml.TomlDecodeError) as e:
    raise PostprocessingError(f"Could not read {filepath}: {e}") from e
  section = data.get("tool", {}).get("pycnorm", {})
  section = {k.replace("-", "_"): v for k, v in section.items()}
  unknown = sorted(set(section) - set(FILE_OPTIONS))
  if unknown:
    raise PostprocessingError(
        "Unknown option(s) in %s: %s" % (filepath, ", ".join(unknown)))
  return section


def apply_config_file(options):
  """Fill in options not given on the command line from the config file."""
  if options.config is None:
    options.config = find_config_file(os.getcwd())
  file_values = read_config_file(options.config) if options.config else {}
  for k, default in FILE_OPTIONS.items():
    if getattr(options, k, None) is None:
      setattr(options, k, file_values.get(k, default))


class Postprocessor:
  """Postprocesses configuration options."""

  def __init__(self, names, input_options, output_options=None):
    """Initializes a Postprocessor.

    Postprocesses the subset of options in names from input_options
    and stores them in output_options. If a processor exists for an option
    (named _store_<name>), it is called with the input value; otherwise the
    value is copied as-is.

    Args:
      names: The set of names of options to postprocess.
      input_options: Input options (e.g. an argparse.Namespace).
      output_options: Optionally, an object in which to store the
        postprocessed options. If None, input_options is used.
    """
    self.names = names
    self.input_options = input_options
    self.output_options = output_options or input_options

  def process(self):
    for name in sorted(self.names):
      value = getattr(self.input_options, name)
      processor = getattr(self, "_store_" + name, None)
      if processor is not None:
        processor(value)
      else:
        setattr(self.output_options, name, value)

  def error(self, message, key=None):
    if key:
      message = "argument --%s: %s" % (key, message)
    raise PostprocessingError(message)

  def _store_check(self, check):
    self.output_options.check = bool(check)

  def _store_keep_going(self, keep_going):
    self.output_options.keep_going = bool(keep_going)

  def _store_show_config(self, show_config):
    self.output_options.show_config = bool(show_config)

  def _store_timestamp_logs(self, timestamp_logs):
    self.output_options.timestamp_logs = bool(timestamp_logs)

  def _store_version(self, version):
    self.output_options.version = bool(version)

  def _store_jobs(self, jobs):
    """Store the number of parallel jobs."""
    if jobs == "auto":
      self.output_options.jobs = os.cpu_count() or 1
      return
    try:
      jobs = int(jobs)
    except (TypeError, ValueError):
      self.error("must be a number or 'auto': %r" % (jobs,), "jobs")
    if jobs < 1:
      self.error("must be at least 1: %d" % jobs, "jobs")
    self.output_options.jobs = jobs

  def _store_verbosity(self, verbosity):
    """Configure logging."""
    if not isinstance(verbosity, int) or not (
        -1 <= verbosity < len(LOG_LEVELS)):
      self.error("invalid --verbosity: %s" % verbosity)
    self.output_options.verbosity = verbosity

  def _store_exclude(self, exclude):
    if isinstance(exclude, str):
      exclude = exclude.split()
    self.output_options.exclude = list(exclude or [])


def set_verbosity(verbosity, timestamp_logs):
  """Set the logging verbosity."""
  if verbosity >= 0:
    basic_logging_level = LOG_LEVELS[verbosity]
  else:
    # "verbosity=-1" can be used to disable all logging, so configure
    # logging accordingly.
    basic_logging_level = logging.CRITICAL + 1
  if logging.getLogger().handlers:
    # When calling pycnorm as a library, override the caller's logging level.
    logging.getLogger().setLevel(basic_logging_level)
  else:
    fmt = "%(levelname)s:%(name)s %(message)s"
    if timestamp_logs:
      fmt = "%(relativeCreated)f " + fmt
    logging.basicConfig(level=basic_logging_level, format=fmt)


@contextlib.contextmanager
def verbosity_from(options):
  """Sets the logging level to options.verbosity and restores it afterwards.

  Arguments:
    options: A config.Options object.

  Yields:
    Nothing.
  """
  level = logging.getLogger().getEffectiveLevel()
  set_verbosity(options.verbosity, options.timestamp_logs)
  try:
    yield
  finally:
    logging.getLogger().setLevel(level)
