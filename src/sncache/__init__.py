"""
sncache — local replica of an encrypted notes collection.

Keeps an on-disk copy of every item, tracks local edits with a
pending-write flag, and reconciles with the remote sync service
one cycle at a time using an opaque continuation token.
"""

import os

__version__ = "0.1.0"

SNCACHE_HOME = os.environ.get("SNCACHE_HOME", "~/.sncache")
