#!/usr/bin/env python
"""pycnorm setup file."""

import os

from setuptools import setup

# Path to directory containing setup.py
here = os.path.abspath(os.path.dirname(__file__))


def get_long_description():
  # Read the long-description from a file.
  with open(os.path.join(here, 'README.md'), encoding='utf-8') as f:
    return '\n' + f.read()


# Only options configured at build time are declared here, everything else is
# declared in setup.cfg
setup(
    long_description=get_long_description(),
    long_description_content_type='text/markdown',
)
