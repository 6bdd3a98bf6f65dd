"""Error types raised by the setup steps."""


class SetupError(Exception):
    """Base error. ``hint`` tells the operator how to fix the problem."""

    hint = ""

    def __init__(self, message, hint=None):
        super().__init__(message)
        self.message = message
        if hint is not None:
            self.hint = hint


class EnvironmentCheckError(SetupError):
    hint = "This tool configures GPG signing on macOS only."

    def __init__(self, message, os_name="", architecture="", alternatives=(),
                 missing_tools=(), hint=None):
        super().__init__(message, hint)
        self.os_name = os_name
        self.architecture = architecture
        self.alternatives = list(alternatives)
        self.missing_tools = list(missing_tools)


class ValidationError(SetupError):
    hint = "Expected a 40-character hex fingerprint, e.g. 8062BB876817BADB404DCD95ADD781F2D92DAA2E"


class KeyImportError(SetupError):
    hint = "You can import the key manually: keybase pgp export -q <fingerprint> | gpg --import"


class KeyGenerationError(SetupError):
    hint = "Try generating a key manually: gpg --full-generate-key"


class SourceError(SetupError):
    hint = "Make sure you have PGP keys in Keybase: keybase pgp gen"


class NotAuthenticated(SourceError):
    hint = "Please run: keybase login"


class KeyUploadError(SetupError):
    pass


class GitConfigError(SetupError):
    hint = "Check that ~/.gitconfig is writable and not locked by another git process."


class KeySelectionError(SetupError):
    hint = (
        "You can:\n"
        "  1. Set up Keybase PGP keys: keybase pgp gen\n"
        "  2. Run this script again and choose to generate a new key\n"
        "  3. Run with --new to always generate a fresh key\n"
        "  4. Manually generate a GPG key: gpg --full-generate-key"
    )


class BackupError(SetupError):
    hint = "Check permissions on your keyring directory and free space on its disk, then retry."
