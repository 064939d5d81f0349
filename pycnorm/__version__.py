# pylint: skip-file
__version__ = '2024.10.18'
