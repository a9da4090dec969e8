"""Container image digest watcher.

Compares the digest a registry advertises for a tracked tag against the
digest of the running container and brings the service up or refreshes it
when they differ.
"""

__version__ = "0.1.0"
