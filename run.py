"""
Thin launcher for the PageTurner gesture core.

Forwards to `PageTurner.core.app.main`. Use `python run.py --replay rec.jsonl`
or `python -m PageTurner.core.app`.
"""

import os
import sys

# Ensure project root is on sys.path for module imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from PageTurner.core.app import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
