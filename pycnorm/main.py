"""Tool for making Python bytecode files reproducible.

Usage:
  pycnorm [flags] input [input ...]

Every .pyc file named on the command line, or found below a directory named on
the command line, is rewritten in place so that it no longer depends on
accidents of the build that produced it.
"""

import collections
import concurrent.futures
import contextlib
import logging
import sys

from pycnorm import __version__
from pycnorm import config
from pycnorm import exceptions
from pycnorm import file_utils
from pycnorm import handler
from pycnorm import utils
from pycnorm.pyc import pyc


log = logging.getLogger(__name__)

# Errors that only affect the file being processed.
_FILE_ERRORS = (exceptions.PycError, OSError, ValueError, EOFError,
                BufferError)

FAILED = "failed"


def is_input(path):
  """Whether path is a pyc file to process, rather than our own output."""
  return (handler.is_candidate(path) and
          not path.endswith("." + pyc.FIXED_EXTENSION))


def collect_files(options):
  """Expand options.inputs into a sorted list of pyc files."""
  files = file_utils.expand_source_files(options.inputs, is_input)
  if options.exclude:
    files -= set(file_utils.expand_globpaths(options.exclude))
  return sorted(files)


def process_file(options, path):
  """Run the handler on one file, turning per-file errors into a result.

  Returns:
    A tuple (path, outcome, error). outcome is a handler.Outcome, or FAILED
    in which case error holds the error message.
  """
  try:
    return path, handler.process(options, path), None
  except _FILE_ERRORS as e:
    return path, FAILED, str(e)


def _iter_results(options, files):
  """Yield process_file() results, stopping at the first error if asked to."""
  if options.jobs == 1 or len(files) < 2:
    for path in files:
      yield process_file(options, path)
    return
  with concurrent.futures.ProcessPoolExecutor(
      max_workers=options.jobs, initializer=config.set_verbosity,
      initargs=(options.verbosity, options.timestamp_logs)) as executor:
    futures = [executor.submit(process_file, options, path) for path in files]
    try:
      for future in concurrent.futures.as_completed(futures):
        yield future.result()
    finally:
      # No-op if all futures are done; otherwise we stopped early.
      for future in futures:
        future.cancel()


def run(options):
  """Process all inputs.

  Args:
    options: A config.Options object.

  Returns:
    A collections.Counter mapping outcomes (and FAILED) to numbers of files.
  """
  counts = collections.Counter()
  files = collect_files(options)
  log.info("Processing %d file(s)", len(files))
  with contextlib.closing(_iter_results(options, files)) as results:
    for path, outcome, error in results:
      counts[outcome] += 1
      if outcome == FAILED:
        log.error("%s", error)
        if not options.keep_going:
          break
      elif outcome == handler.Outcome.MODIFIED and options.check:
        print(path)
  return counts


def format_summary(counts):
  return "%d modified, %d unchanged, %d skipped, %d failed" % (
      counts[handler.Outcome.MODIFIED], counts[handler.Outcome.UNCHANGED],
      counts[handler.Outcome.SKIPPED], counts[FAILED])


def main(argv=None):
  options = config.Options(sys.argv[1:] if argv is None else argv)

  if options.show_config:
    print(options)
    return 0

  if options.version:
    print(__version__.__version__)
    return 0

  try:
    if not options.inputs:
      raise utils.UsageError("Need at least one input.")
    with config.verbosity_from(options):
      counts = run(options)
  except utils.UsageError as e:
    print(str(e), file=sys.stderr)
    return 1

  print(format_summary(counts))
  if counts[FAILED]:
    return 1
  if options.check and counts[handler.Outcome.MODIFIED]:
    return 1
  return 0


if __name__ == "__main__":
  sys.exit(main())
