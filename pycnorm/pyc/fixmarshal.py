"""Clear unused reference flags in data in the "marshal" file format.

When CPython marshals an object that has more than one reference, it ORs
FLAG_REF into the object's type code and appends the object to a reference
table, so that later occurrences can be written as a TYPE_REF back-reference.
Whether an object has more than one reference at dump time depends on
interpreter state (interning, caches, the compiler's own bookkeeping), so two
builds of the same source can produce pycs that differ only in which objects
carry the flag. The flag is only needed on objects that some TYPE_REF actually
points at; this module clears it everywhere else and renumbers the remaining
back-references.

The walker below mirrors the structure of CPython's r_object() without
building any values.
"""

import logging
from typing import List, Tuple


log = logging.getLogger(__name__)


TYPE_NULL = 0x30  # '0'
TYPE_NONE = 0x4e  # 'N'
TYPE_FALSE = 0x46  # 'F'
TYPE_TRUE = 0x54  # 'T'
TYPE_STOPITER = 0x53  # 'S'
TYPE_ELLIPSIS = 0x2e  # '.'
TYPE_INT = 0x69  # 'i'
TYPE_INT64 = 0x49  # 'I'
TYPE_FLOAT = 0x66  # 'f'
TYPE_BINARY_FLOAT = 0x67  # 'g'
TYPE_COMPLEX = 0x78  # 'x'
TYPE_BINARY_COMPLEX = 0x79  # 'y'
TYPE_LONG = 0x6c  # 'l'
TYPE_STRING = 0x73  # 's'
TYPE_INTERNED = 0x74  # 't'
TYPE_STRINGREF = 0x52  # 'R'
TYPE_TUPLE = 0x28  # '('
TYPE_LIST = 0x5b  # '['
TYPE_DICT = 0x7b  # '{'
TYPE_CODE = 0x63  # 'c'
TYPE_UNICODE = 0x75  # 'u'
TYPE_SET = 0x3c  # '<'
TYPE_FROZENSET = 0x3e  # '>'
TYPE_REF = 0x72  # 'r'
TYPE_ASCII = 0x61  # 'a'
TYPE_ASCII_INTERNED = 0x41  # 'A'
TYPE_SMALL_TUPLE = 0x29  # ')'
TYPE_SHORT_ASCII = 0x7a  # 'z'
TYPE_SHORT_ASCII_INTERNED = 0x5a  # 'Z'
TYPE_SLICE = 0x3a  # ':', Python 3.14+

# Or-ing this flag to one of the codes above will cause the decoded value to
# be stored in a reference table for later lookup. This feature was added in
# Python 3.4.
REF = 0x80

# Objects that are never stored in the reference table, even if flagged.
_SINGLETONS = frozenset([
    TYPE_NULL, TYPE_NONE, TYPE_FALSE, TYPE_TRUE, TYPE_STOPITER, TYPE_ELLIPSIS])


# Like MAX_MARSHAL_STACK_DEPTH in Python/marshal.c.
MAX_MARSHAL_STACK_DEPTH = 2000


class _ScanMarshal:
  """Stateful walker that records reference flags and back-references.

  Containers are scanned by generators that yield once for every nested
  object they need, and receive that object's type code back. scan() drives
  them with an explicit stack, so deeply nested data does not run into the
  Python recursion limit.
  """

  def __init__(self, data, python_version):
    self.bufstr = data
    self.bufpos = 0
    self.python_version = python_version
    # Offset of the type byte of every flagged object, by reference index.
    self.flags: List[int] = []
    # (offset of the 4 byte index, index) for every TYPE_REF.
    self.refs: List[Tuple[int, int]] = []

  def eof(self):
    """Return True if we reached the end of the stream."""
    return self.bufpos == len(self.bufstr)

  def scan(self):
    """Skip over one encoded object, returning its type code (without REF)."""
    stack = []
    t, items = self._start_object()
    child = None
    while True:
      if items is not None:
        try:
          items.send(child)
        except StopIteration:
          pass
        else:
          # The container wants another nested object.
          if len(stack) + 2 > MAX_MARSHAL_STACK_DEPTH:
            raise ValueError(
                f'bad marshal data (nesting deeper than '
                f'{MAX_MARSHAL_STACK_DEPTH} at {self.bufpos})')
          stack.append((t, items))
          t, items = self._start_object()
          child = None
          continue
      if not stack:
        return t
      child = t
      t, items = stack.pop()

  def _start_object(self):
    """Read a type code and skip the object's own payload.

    Returns:
      A tuple (type code, items), where items is None for objects without
      nested objects and a generator for containers.
    """
    pos = self.bufpos
    c = self._read_byte()
    t = c & ~REF
    if t not in _ScanMarshal.dispatch:
      raise ValueError(f'bad marshal code: {chr(t)!r} ({t:02x}) at {pos}')
    if c & REF and t not in _SINGLETONS:
      # Like r_ref_reserve() in Python/marshal.c, the index is taken before
      # any nested objects are read.
      self.flags.append(pos)
    return t, _ScanMarshal.dispatch[t](self)

  def _read(self, n):
    """Read n bytes as a string."""
    pos = self.bufpos
    self.bufpos += n
    if self.bufpos > len(self.bufstr):
      raise EOFError()
    return self.bufstr[pos : self.bufpos]

  def _read_byte(self):
    """Read an unsigned byte."""
    if self.bufpos >= len(self.bufstr):
      raise EOFError()
    pos = self.bufpos
    self.bufpos += 1
    return self.bufstr[pos]

  def _read_long(self):
    """Read a signed 32 bit word."""
    return int.from_bytes(self._read(4), 'little', signed=True)

  def _skip_sized(self):
    n = self._read_long()
    if n < 0:
      raise ValueError(f'bad marshal data (negative size {n})')
    self._read(n)

  def _items(self, n):
    if n < 0:
      raise ValueError(f'bad marshal data (negative size {n})')
    for _ in range(n):
      yield

  # pylint: disable=missing-docstring
  # This is a bunch of small methods with self-explanatory names. The ones
  # for containers are generators, see scan().

  def scan_singleton(self):
    pass

  def scan_int(self):
    self._read(4)

  def scan_int64(self):
    self._read(8)

  def scan_long(self):
    n = self._read_long()
    self._read(2 * abs(n))

  def scan_float(self):
    self._read(self._read_byte())

  def scan_binary_float(self):
    self._read(8)

  def scan_complex(self):
    self._read(self._read_byte())
    self._read(self._read_byte())

  def scan_binary_complex(self):
    self._read(16)

  def scan_short_ascii(self):
    self._read(self._read_byte())

  def scan_stringref(self):
    self._read(4)

  def scan_small_tuple(self):
    yield from self._items(self._read_byte())

  def scan_sequence(self):
    yield from self._items(self._read_long())

  def scan_dict(self):
    # Keys and values alternate until a TYPE_NULL key.
    while (yield) != TYPE_NULL:
      yield

  def scan_slice(self):
    yield from self._items(3)

  def scan_ref(self):
    pos = self.bufpos
    n = self._read_long()
    if not 0 <= n < len(self.flags):
      raise ValueError(f'bad marshal data (invalid reference {n} at {pos})')
    self.refs.append((pos, n))

  def scan_code(self):
    """Skip a code object, whose layout depends on the Python version."""
    if self.python_version >= (3, 11):
      # argcount, posonlyargcount, kwonlyargcount, stacksize, flags
      self._read(4 * 5)
      # code, consts, names, localsplusnames, localspluskinds, filename, name,
      # qualname
      yield from self._items(8)
      self._read(4)  # firstlineno
      yield from self._items(2)  # linetable, exceptiontable
      return
    if self.python_version >= (3, 8):
      self._read(4 * 6)  # argcount, posonlyargcount, kwonlyargcount, ...
    else:
      self._read(4 * 5)  # argcount, kwonlyargcount, nlocals, stacksize, flags
    # code, consts, names, varnames, freevars, cellvars, filename, name
    yield from self._items(8)
    self._read(4)  # firstlineno
    yield  # lnotab

  # pylint: enable=missing-docstring

  dispatch = {
      TYPE_ASCII: _skip_sized,
      TYPE_ASCII_INTERNED: _skip_sized,
      TYPE_BINARY_COMPLEX: scan_binary_complex,
      TYPE_BINARY_FLOAT: scan_binary_float,
      TYPE_CODE: scan_code,
      TYPE_COMPLEX: scan_complex,
      TYPE_DICT: scan_dict,
      TYPE_ELLIPSIS: scan_singleton,
      TYPE_FALSE: scan_singleton,
      TYPE_FLOAT: scan_float,
      TYPE_FROZENSET: scan_sequence,
      TYPE_INT64: scan_int64,
      TYPE_INT: scan_int,
      TYPE_INTERNED: _skip_sized,
      TYPE_LIST: scan_sequence,
      TYPE_LONG: scan_long,
      TYPE_NONE: scan_singleton,
      TYPE_NULL: scan_singleton,
      TYPE_REF: scan_ref,
      TYPE_SET: scan_sequence,
      TYPE_SHORT_ASCII: scan_short_ascii,
      TYPE_SHORT_ASCII_INTERNED: scan_short_ascii,
      TYPE_SLICE: scan_slice,
      TYPE_SMALL_TUPLE: scan_small_tuple,
      TYPE_STOPITER: scan_singleton,
      TYPE_STRING: _skip_sized,
      TYPE_STRINGREF: scan_stringref,
      TYPE_TRUE: scan_singleton,
      TYPE_TUPLE: scan_sequence,
      TYPE_UNICODE: _skip_sized,
  }


def scan(data, python_version):
  """Walk marshal data and collect its reference flags and back-references.

  Args:
    data: The marshal data, e.g. a pyc file without its header.
    python_version: (major, minor) of the interpreter that wrote the data,
      3.0 or later.

  Returns:
    A tuple (flags, refs): the offsets of all flagged type bytes, in reference
    table order, and a list of (offset, index) pairs, one per TYPE_REF.

  Raises:
    ValueError: On an unknown type code, a reference to a missing entry or
      objects nested deeper than MAX_MARSHAL_STACK_DEPTH.
    EOFError: If the data is truncated.
    BufferError: If there are bytes after the top-level object.
  """
  sm = _ScanMarshal(data, python_version)
  sm.scan()
  if not sm.eof():
    raise BufferError('trailing bytes in marshal data')
  return sm.flags, sm.refs


def clear_unused_ref_flags(data, python_version):
  """Return data with the REF flag removed from never-referenced objects.

  The remaining TYPE_REF indices are renumbered to match the smaller reference
  table. Since indices are fixed-size, the result has the same length as the
  input, and running this on its own output returns it unchanged.
  """
  flags, refs = scan(data, python_version)
  used = {index for _, index in refs}
  out = bytearray(data)
  # new_index[i] is the index of entry i once the unused entries are gone.
  new_index = []
  removed = 0
  for index, pos in enumerate(flags):
    new_index.append(index - removed)
    if index not in used:
      out[pos] &= ~REF
      removed += 1
  for pos, index in refs:
    out[pos : pos + 4] = new_index[index].to_bytes(4, 'little', signed=True)
  if removed:
    log.debug('Cleared %d of %d reference flags', removed, len(flags))
  return bytes(out)
