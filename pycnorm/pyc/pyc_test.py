"""Tests for pyc.py."""

import marshal
import os
import py_compile
import sys

from pycnorm import exceptions
from pycnorm import file_utils
from pycnorm.pyc import pyc
import unittest


# Python 3.12 header: magic 3531, flags, mtime, source size.
PY312_HEADER = b"\xcb\x0d\r\n" + b"\x00" * 12


def _long(n):
  return n.to_bytes(4, "little", signed=True)


class TestHeader(unittest.TestCase):
  """Tests for header handling."""

  def test_header_size(self):
    self.assertEqual(pyc.header_size((2, 7)), 8)
    self.assertEqual(pyc.header_size((3, 2)), 8)
    self.assertEqual(pyc.header_size((3, 3)), 12)
    self.assertEqual(pyc.header_size((3, 6)), 12)
    self.assertEqual(pyc.header_size((3, 7)), 16)
    self.assertEqual(pyc.header_size((3, 14)), 16)

  def test_split(self):
    header, body = pyc.split_pyc_string(PY312_HEADER + b"N", (3, 12))
    self.assertEqual(header, PY312_HEADER)
    self.assertEqual(body, b"N")

  def test_split_short(self):
    with self.assertRaises(EOFError):
      pyc.split_pyc_string(b"\xcb\x0d\r\n", (3, 12))

  def test_fixed_path(self):
    self.assertEqual(pyc.fixed_path("foo.pyc"), "foo.fixed.pyc")
    self.assertEqual(pyc.fixed_path(os.path.join("a", "foo.opt-2.pyc")),
                     os.path.join("a", "foo.opt-2.fixed.pyc"))


class TestFixPycFile(unittest.TestCase):
  """Tests for pyc.fix_pyc_file."""

  def test_modified(self):
    data = PY312_HEADER + b")\x02" + b"\xe9" + _long(1) + b"N"
    with file_utils.Tempdir() as d:
      path = d.create_file("foo.pyc", data)
      self.assertTrue(pyc.fix_pyc_file(path))
      with open(path, "rb") as fi:
        self.assertEqual(fi.read(), data)
      with open(d["foo.fixed.pyc"], "rb") as fi:
        self.assertEqual(fi.read(),
                         PY312_HEADER + b")\x02" + b"i" + _long(1) + b"N")

  def test_unchanged(self):
    data = PY312_HEADER + b")\x02" + b"i" + _long(1) + b"N"
    with file_utils.Tempdir() as d:
      path = d.create_file("foo.pyc", data)
      self.assertFalse(pyc.fix_pyc_file(path))
      self.assertFalse(os.path.exists(d["foo.fixed.pyc"]))

  def test_explicit_version(self):
    # A Python 3.6 header is 12 bytes long.
    data = b"\x33\x0d\r\n" + b"\x00" * 8 + b"\xe9" + _long(1)
    with file_utils.Tempdir() as d:
      path = d.create_file("foo.pyc", data)
      self.assertTrue(pyc.fix_pyc_file(path, (3, 6)))

  def test_no_reference_flags(self):
    flagged = b")\x02" + b"\xe9" + _long(1) + b"N"
    with file_utils.Tempdir() as d:
      for name, header in [("py15.pyc", b"\x99\x4e\r\n" + b"\x00" * 4),
                           ("py33.pyc", b"\x9e\x0c\r\n" + b"\x00" * 8)]:
        path = d.create_file(name, header + flagged)
        self.assertFalse(pyc.fix_pyc_file(path))
        self.assertFalse(os.path.exists(pyc.fixed_path(path)))
      path = d.create_file("py34.pyc", b"\xee\x0c\r\n" + b"\x00" * 8 + flagged)
      self.assertFalse(pyc.fix_pyc_file(path, (3, 3)))
      self.assertTrue(pyc.fix_pyc_file(path, (3, 4)))

  def test_not_a_pyc(self):
    with file_utils.Tempdir() as d:
      path = d.create_file("foo.pyc", b"\xcb\x0d\n\n" + b"\x00" * 12 + b"N")
      with self.assertRaises(exceptions.NotAPycFile):
        pyc.fix_pyc_file(path)

  def test_malformed(self):
    with file_utils.Tempdir() as d:
      path = d.create_file("foo.pyc", PY312_HEADER + b"\x01")
      with self.assertRaises(ValueError):
        pyc.fix_pyc_file(path)
      self.assertFalse(os.path.exists(d["foo.fixed.pyc"]))

  def test_compiled_file(self):
    with file_utils.Tempdir() as d:
      src = d.create_file("mod.py", """
        def f(x, *, key="spam"):
          return {"spam": [x, key, "spam"]}
      """)
      path = py_compile.compile(src, cfile=d["mod.pyc"], doraise=True)
      with open(path, "rb") as fi:
        data = fi.read()
      size = pyc.header_size(sys.version_info[:2])
      if pyc.fix_pyc_file(path):
        fixed_path = d["mod.fixed.pyc"]
        with open(fixed_path, "rb") as fi:
          fixed = fi.read()
        self.assertEqual(fixed[:size], data[:size])
        self.assertEqual(marshal.loads(fixed[size:]),
                         marshal.loads(data[size:]))
        # The normalized file needs no further changes.
        self.assertFalse(pyc.fix_pyc_file(fixed_path))


if __name__ == "__main__":
  unittest.main()
