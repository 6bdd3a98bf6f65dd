"""Configure GPG commit signing for git on macOS."""

__version__ = "1.0.0"
