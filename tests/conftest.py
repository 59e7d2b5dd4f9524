"""Shared test setup."""

import sys
from pathlib import Path

TESTS_DIR = Path(__file__).parent
PROJECT_DIR = TESTS_DIR.parent
SRC_DIR = PROJECT_DIR / "src"

# Ensure tests import this checkout (src layout), not an installed package.
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))
