"""OS keystore integration using keyring for opt-in "remember password" unlock.

A file's password can be stored under (service, file id) so that biometric
or OS-login protected keychains can unlock it later. Use this only for
opt-in convenience storage; do not assume keyring provides hardware-backed
security on all platforms.
"""
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError


def store_password(service: str, account: str, secret: str) -> None:
    """Persist ``secret`` in the OS keystore under (service, account)."""
    keyring.set_password(service, account, secret)


def retrieve_password(service: str, account: str) -> Optional[str]:
    """Return the stored secret or None when nothing is stored."""
    return keyring.get_password(service, account)


def delete_password(service: str, account: str) -> bool:
    """Remove the stored secret; returns False when there was none."""
    try:
        keyring.delete_password(service, account)
    except PasswordDeleteError:
        return False
    return True


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Heuristics are used because the `keyring` package exposes different backends
    across platforms.
    """
    try:
        backend = keyring.get_keyring()
    except KeyringError as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Simple", "File", "fail", "Null")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no suitable secure keyring backend available (priority={priority}, backend={name})"

    # treat known platform backends as acceptable
    if "Win" in name or "Keychain" in name or "SecretService" in name or "KWallet" in name:
        return True, f"backend looks acceptable: {name} (priority={priority})"

    return True, f"unknown backend '{name}', treat with caution (priority={priority})"
