"""
FileOpts — per-field filename collision policies for file uploads.

Fields choose what happens when an upload lands on an existing file:
rename it, replace the existing file, reject the upload, or inherit the
system default. The upload resolver applies that choice under a lock
scoped to the destination path.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "fields", "policies", "files", "runtime", "api", "cli"]
