"""
Pytest configuration for the unit tests.

The modules under src/ are top-level modules rather than a package; put
src/ on sys.path so tests import them by name (``import lifecycle``).
"""

import pathlib
import sys

SRC_DIR = str(pathlib.Path(__file__).resolve().parent / "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
