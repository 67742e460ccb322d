"""
Unit tests for the CompanyDocument state machine.
"""

import pytest

from argofile.core.container import ContainerService
from argofile.core.document import CompanyDocument, DocumentState
from argofile.core.exceptions import (
    AuthenticationFailureError,
    InvalidArgumentError,
    NotAContainerFileError,
    PasswordRequiredError,
)
from argofile.core.platform_service import PlatformService
from argofile.core.tasks import BackgroundRunner
from argofile.security.kdf import KdfParams


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def service(tmp_path):
    return ContainerService(PlatformService(home=tmp_path / "home"), kdf_params=KdfParams(iterations=1000))


@pytest.fixture
def runner():
    r = BackgroundRunner()
    yield r
    r.shutdown()


@pytest.fixture
def document(service, runner):
    return CompanyDocument(service, runner=runner)


@pytest.fixture
def dataset():
    return {"settings": {"company": {"name": "Acme Ltd"}}, "invoices": []}


@pytest.fixture
def encrypted_file(service, dataset, tmp_path):
    path = tmp_path / "a.argo"
    service.save(path, dataset, "Secret123")
    return path


@pytest.fixture
def plain_file(service, dataset, tmp_path):
    path = tmp_path / "plain.argo"
    service.save(path, dataset)
    return path


# ==============================================================================
# Tests: opening
# ==============================================================================

def test_initial_state(document):
    assert document.state is DocumentState.UNOPENED
    assert document.is_open is False
    assert document.company_name is None


def test_open_unencrypted(document, plain_file, dataset):
    assert document.open(plain_file) == dataset
    assert document.state is DocumentState.OPEN
    assert document.is_encrypted is False
    assert document.company_name == "Acme Ltd"
    assert document.has_unsaved_changes is False


def test_open_encrypted_with_password(document, encrypted_file, dataset):
    assert document.open(encrypted_file, "Secret123") == dataset
    assert document.state is DocumentState.OPEN
    assert document.is_encrypted is True


def test_open_encrypted_prompts_for_password(document, encrypted_file, dataset):
    with pytest.raises(PasswordRequiredError):
        document.open(encrypted_file)
    assert document.state is DocumentState.PASSWORD_REQUIRED
    assert document.company_name == "Acme Ltd"

    with pytest.raises(AuthenticationFailureError):
        document.provide_password("WrongPass1")
    assert document.state is DocumentState.PASSWORD_REQUIRED

    assert document.provide_password("Secret123") == dataset
    assert document.state is DocumentState.OPEN


def test_provide_password_without_pending_prompt(document):
    with pytest.raises(InvalidArgumentError):
        document.provide_password("Secret123")


def test_open_failure_restores_previous_state(document, tmp_path):
    junk = tmp_path / "junk.argo"
    junk.write_bytes(b"\x00" * 100)
    with pytest.raises(NotAContainerFileError):
        document.open(junk)
    assert document.state is DocumentState.UNOPENED
    assert document.path is None


def test_open_wrong_password_keeps_current_document(document, plain_file, encrypted_file):
    document.open(plain_file)
    with pytest.raises(AuthenticationFailureError):
        document.open(encrypted_file, "WrongPass1")
    assert document.state is DocumentState.OPEN
    assert document.path == plain_file


# ==============================================================================
# Tests: saving
# ==============================================================================

def test_save_reuses_password(document, service, encrypted_file):
    data = document.open(encrypted_file, "Secret123")
    data["invoices"].append({"id": "INV-9"})
    document.mark_changed()
    assert document.has_unsaved_changes is True

    footer = document.save()
    assert footer.is_encrypted is True
    assert document.has_unsaved_changes is False
    assert document.state is DocumentState.OPEN
    assert service.open(encrypted_file, "Secret123")["invoices"] == [{"id": "INV-9"}]


def test_save_as_changes_path_and_encryption(document, service, encrypted_file, tmp_path, dataset):
    document.open(encrypted_file, "Secret123")
    copy = tmp_path / "copy.argo"
    document.save_as(copy)

    assert document.path == copy
    assert document.is_encrypted is False
    assert service.open(copy) == dataset


def test_save_requires_open_document(document):
    with pytest.raises(InvalidArgumentError):
        document.save()


def test_mark_changed_without_dataset(document):
    document.mark_changed()
    assert document.has_unsaved_changes is False


# ==============================================================================
# Tests: password management
# ==============================================================================

def test_verify_current_password(document, encrypted_file):
    document.open(encrypted_file, "Secret123")
    assert document.verify_current_password("Secret123") is True
    assert document.verify_current_password("WrongPass1") is False


def test_change_password(document, service, encrypted_file, dataset):
    document.open(encrypted_file, "Secret123")
    document.change_password("Secret123", "NewPass456")
    assert document.verify_current_password("NewPass456") is True
    assert service.open(encrypted_file, "NewPass456") == dataset


def test_change_password_rejects_wrong_current(document, encrypted_file):
    document.open(encrypted_file, "Secret123")
    with pytest.raises(InvalidArgumentError):
        document.change_password("WrongPass1", "NewPass456")
    assert document.state is DocumentState.OPEN


def test_remove_password(document, service, encrypted_file):
    document.open(encrypted_file, "Secret123")
    footer = document.change_password("Secret123", None)
    assert footer.is_encrypted is False
    assert document.is_encrypted is False
    assert service.is_encrypted(encrypted_file) is False


def test_export_backup(document, service, plain_file, dataset, tmp_path):
    document.open(plain_file)
    backup = tmp_path / "plain.argobk"
    footer = document.export_backup(backup)
    assert footer.kind == "backup"
    assert footer.company_name == "Acme Ltd"
    assert service.restore_from_backup_archive(backup) == dataset


# ==============================================================================
# Tests: close and background variants
# ==============================================================================

def test_close_wipes_state(document, encrypted_file):
    document.open(encrypted_file, "Secret123")
    document.close()
    assert document.state is DocumentState.CLOSED
    assert document.dataset is None
    assert document.path is None
    assert document.is_encrypted is False
    assert document.verify_current_password("Secret123") is False


def test_open_and_save_async(document, encrypted_file, dataset):
    assert document.open_async(encrypted_file, "Secret123").result(timeout=30) == dataset
    footer = document.save_async().result(timeout=30)
    assert footer.is_encrypted is True


def test_open_async_password_required(document, encrypted_file):
    handle = document.open_async(encrypted_file)
    with pytest.raises(PasswordRequiredError):
        handle.result(timeout=30)
    assert document.state is DocumentState.PASSWORD_REQUIRED


def test_change_password_async(document, service, encrypted_file, dataset):
    document.open(encrypted_file, "Secret123")
    document.change_password_async("Secret123", "NewPass456").result(timeout=30)
    assert service.open(encrypted_file, "NewPass456") == dataset


def test_async_requires_runner(service, plain_file):
    doc = CompanyDocument(service)
    with pytest.raises(RuntimeError):
        doc.open_async(plain_file)
