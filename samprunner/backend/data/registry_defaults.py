"""
Prefix defaults applied once after a fresh bootstrap.

Tuples of (scope, key path, name, value, registry type). Order matters.
"""

PREFIX_DEFAULTS = [
    ("HKCU", "Software\\Wine\\DirectSound", "HelBuflen", "512", "REG_SZ"),
    ("HKCU", "Software\\Wine\\DirectSound", "SndQueueMax", "3", "REG_SZ"),
    ("HKCU", "Software\\Wine", "Version", "win10", "REG_SZ"),
]
