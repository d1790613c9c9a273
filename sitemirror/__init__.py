"""
Site Mirror

Recursively copies a website to local storage, one task per discovered URL.
"""

__version__ = "1.0.0"
__description__ = "Concurrent same-domain website mirroring"
