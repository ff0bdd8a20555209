"""Pytest configuration helpers.

Puts `backend/` on `sys.path` so tests import `models`, `services` and `utils`
the same way `server.py` does, however pytest is invoked.
"""
import os
import sys


BACKEND = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)
