"""
ssh-tgzx: encrypted tar.gz archives addressed to published SSH keys.

Features:

- Recipients come from a user's public key listing (``https://github.com/<user>.keys``);
  ``ssh-rsa`` and ``ssh-ed25519`` keys are used, anything else is skipped.
- The archive is a gzip-compressed tar stream, encrypted in the age v1 format so any
  one listed key can decrypt it independently.
- Create streams the archive straight into the encryptor through a bounded pipe.
- Extraction refuses entries that would land outside the destination directory.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "keys",
    "archive",
    "envelope",
    "pipeline",
    "cli",
]

# The programmatic API lives in tgzx.pipeline (create_archive/list_archive/extract_archive);
# tgzx.cli wraps it with argument parsing, logging setup and JSON output.
