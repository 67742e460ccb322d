"""
Exceptions for the argofile container pipeline
Every failure the core can produce is one of these, so callers can catch
ArgoFileError as a general error catcher or pick the specific condition.
"""


class ArgoFileError(Exception):
    # general container for errors
    pass


class InvalidArgumentError(ArgoFileError, ValueError):
    # raised on programmer error (empty password, missing salt, bad nonce)
    pass


class WeakPasswordError(InvalidArgumentError):
    # raised when a new password does not meet the minimum rules

    def __init__(self, violations):
        self.violations = list(violations)
        super().__init__("; ".join(self.violations) or "Password is not acceptable.")


class PasswordRequiredError(ArgoFileError):
    # raised when an encrypted file is opened without a password (re-prompt)
    pass


class OpenFailedError(ArgoFileError):
    # raised when stored data could not be turned back into a dataset
    reason = "failed"


class AuthenticationFailureError(OpenFailedError):
    # raised on wrong password or tampered ciphertext; never says which
    reason = "authentication"

    def __init__(self, message: str = "This file could not be opened: wrong password or damaged data."):
        super().__init__(message)


class CorruptDataError(OpenFailedError):
    # raised when compressed, archived or serialized data is unreadable
    reason = "corrupt"


class NotAContainerFileError(CorruptDataError):
    # raised when the format signature or footer is missing
    pass


class UnsafeArchiveEntryError(CorruptDataError):
    # raised when an archive entry would land outside the destination

    def __init__(self, entry_name: str):
        self.entry_name = entry_name
        super().__init__(f"Archive entry escapes the destination directory: {entry_name!r}")


class UnsupportedVersionError(OpenFailedError):
    # raised when the file was written by a newer, incompatible format
    reason = "unsupported_version"


class OperationCancelledError(ArgoFileError):
    # raised when a long running operation observed its cancel event
    pass


class IOFailureError(ArgoFileError):
    # raised on disk / permission problems (wraps OSError)
    pass
