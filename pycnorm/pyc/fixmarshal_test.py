"""Tests for fixmarshal.py."""

import marshal
import sys
import textwrap

from pycnorm.pyc import fixmarshal
import unittest


PY312 = (3, 12)


def _long(n):
  return n.to_bytes(4, "little", signed=True)


class TestScan(unittest.TestCase):
  """Tests for fixmarshal.scan."""

  def test_flags_and_refs(self):
    data = (b"[" + _long(3) +
            b"\xe9" + _long(1) +  # flagged int, index 0
            b"\xe9" + _long(2) +  # flagged int, index 1
            b"r" + _long(1))
    flags, refs = fixmarshal.scan(data, PY312)
    self.assertEqual(flags, [5, 10])
    self.assertEqual(refs, [(16, 1)])

  def test_container_index_reserved_first(self):
    data = (b"[" + _long(2) +
            b"\xa9\x01" +  # flagged small tuple, index 0
            b"\xfa\x01x" +  # flagged short ascii, index 1
            b"r" + _long(0))
    flags, refs = fixmarshal.scan(data, PY312)
    self.assertEqual(flags, [5, 7])
    self.assertEqual(refs, [(11, 0)])

  def test_flagged_singletons_are_not_stored(self):
    flags, refs = fixmarshal.scan(b")\x03\xce\xd4\xae", PY312)
    self.assertEqual(flags, [])
    self.assertEqual(refs, [])

  def test_dict(self):
    data = b"{" + b"\xfa\x01k" + b"i" + _long(7) + b"r" + _long(0) + b"N0"
    flags, refs = fixmarshal.scan(data, PY312)
    self.assertEqual(flags, [1])
    self.assertEqual(refs, [(10, 0)])

  def test_slice(self):
    data = b":" + b"N" + b"i" + _long(3) + b"N"
    self.assertEqual(fixmarshal.scan(data, (3, 14)), ([], []))

  def test_long_and_floats(self):
    data = (b")\x04" +
            b"l" + _long(-2) + b"\x01\x00\x02\x00" +
            b"g" + b"\x00" * 8 +
            b"y" + b"\x00" * 16 +
            b"f\x031.5")
    self.assertEqual(fixmarshal.scan(data, PY312), ([], []))

  def test_bad_code(self):
    with self.assertRaises(ValueError):
      fixmarshal.scan(b"\x01", PY312)

  def test_bad_reference(self):
    with self.assertRaises(ValueError):
      fixmarshal.scan(b"r" + _long(0), PY312)
    with self.assertRaises(ValueError):
      fixmarshal.scan(b")\x02\xe9" + _long(1) + b"r" + _long(-1), PY312)

  def test_truncated(self):
    for data in (b"", b"i\x01", b"[" + _long(2) + b"N", b"z\x05ab"):
      with self.assertRaises(EOFError):
        fixmarshal.scan(data, PY312)

  def test_trailing_bytes(self):
    with self.assertRaises(BufferError):
      fixmarshal.scan(b"NN", PY312)


class TestClearUnusedRefFlags(unittest.TestCase):
  """Tests for fixmarshal.clear_unused_ref_flags."""

  def test_clear_unused(self):
    data = b")\x02" + b"\xe9" + _long(1) + b"N"
    self.assertEqual(fixmarshal.clear_unused_ref_flags(data, PY312),
                     b")\x02" + b"i" + _long(1) + b"N")

  def test_renumber(self):
    data = (b"[" + _long(3) +
            b"\xe9" + _long(1) +
            b"\xe9" + _long(2) +
            b"r" + _long(1))
    expected = (b"[" + _long(3) +
                b"i" + _long(1) +
                b"\xe9" + _long(2) +
                b"r" + _long(0))
    self.assertEqual(fixmarshal.clear_unused_ref_flags(data, PY312), expected)

  def test_keep_used_container(self):
    data = (b"[" + _long(2) +
            b"\xa9\x01" +
            b"\xfa\x01x" +
            b"r" + _long(0))
    expected = (b"[" + _long(2) +
                b"\xa9\x01" +
                b"z\x01x" +
                b"r" + _long(0))
    self.assertEqual(fixmarshal.clear_unused_ref_flags(data, PY312), expected)

  def test_nothing_to_clear(self):
    data = b"[" + _long(2) + b"\xe9" + _long(5) + b"r" + _long(0)
    self.assertEqual(fixmarshal.clear_unused_ref_flags(data, PY312), data)

  def test_no_flags(self):
    data = b")\x02" + b"i" + _long(1) + b"N"
    self.assertEqual(fixmarshal.clear_unused_ref_flags(data, PY312), data)


class TestNesting(unittest.TestCase):
  """Tests for deeply nested data."""

  def test_deep_nesting(self):
    data = b"\xa9\x01" * 1000 + b"N"
    flags, refs = fixmarshal.scan(data, PY312)
    self.assertEqual(flags, list(range(0, 2000, 2)))
    self.assertEqual(refs, [])
    self.assertEqual(fixmarshal.clear_unused_ref_flags(data, PY312),
                     b")\x01" * 1000 + b"N")

  def test_nesting_limit(self):
    depth = fixmarshal.MAX_MARSHAL_STACK_DEPTH
    # The innermost None is at depth `depth`.
    self.assertEqual(
        fixmarshal.scan(b")\x01" * (depth - 1) + b"N", PY312), ([], []))
    with self.assertRaises(ValueError):
      fixmarshal.scan(b")\x01" * depth + b"N", PY312)

  def test_nested_dict(self):
    inner = b"{" + b"\xfa\x01k" + b"r" + _long(0) + b"0"
    data = b"{" + b"z\x01a" + inner + b"0"
    flags, refs = fixmarshal.scan(data, PY312)
    self.assertEqual(flags, [5])
    self.assertEqual(refs, [(9, 0)])

  def test_nested_lambdas(self):
    python_version = sys.version_info[:2]
    code = compile("f = " + "lambda: " * 200 + "1\n", "<test>", "exec")
    data = marshal.dumps(code)
    fixed = fixmarshal.clear_unused_ref_flags(data, python_version)
    self.assertEqual(len(fixed), len(data))
    self.assertEqual(marshal.loads(fixed), marshal.loads(data))
    self.assertEqual(
        fixmarshal.clear_unused_ref_flags(fixed, python_version), fixed)


class TestRealMarshalData(unittest.TestCase):
  """Run the fixer on data written by the running interpreter."""

  python_version = sys.version_info[:2]

  SRC = textwrap.dedent("""
    import os

    CONSTANT = ("spam", "eggs", 1.5, 2 ** 70, frozenset({"a", "b"}))

    class Foo:
      def method(self, x, *args, key="spam", **kwargs):
        return [y for y in args if y != key], {"eggs": x}

    def gen():
      try:
        yield from range(10)
      except ValueError as e:
        print(e, "spam")
  """)

  def setUp(self):
    super().setUp()
    self.data = marshal.dumps(compile(self.SRC, "<test>", "exec"))

  def test_same_object(self):
    fixed = fixmarshal.clear_unused_ref_flags(self.data, self.python_version)
    self.assertEqual(len(fixed), len(self.data))
    self.assertEqual(marshal.loads(fixed), marshal.loads(self.data))

  def test_all_remaining_flags_used(self):
    fixed = fixmarshal.clear_unused_ref_flags(self.data, self.python_version)
    flags, refs = fixmarshal.scan(fixed, self.python_version)
    self.assertEqual({index for _, index in refs}, set(range(len(flags))))

  def test_idempotent(self):
    fixed = fixmarshal.clear_unused_ref_flags(self.data, self.python_version)
    self.assertEqual(
        fixmarshal.clear_unused_ref_flags(fixed, self.python_version), fixed)


if __name__ == "__main__":
  unittest.main()
