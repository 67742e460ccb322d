"""
End-to-end scenarios for company and backup files on disk.
"""

import io
import tarfile
from unittest.mock import patch

import pytest

from argofile.core.compression import compress
from argofile.core.container import ContainerService
from argofile.core.document import CompanyDocument, DocumentState
from argofile.core.exceptions import (
    AuthenticationFailureError,
    CorruptDataError,
    IOFailureError,
    PasswordRequiredError,
    UnsafeArchiveEntryError,
)
from argofile.core.footer import KIND_BACKUP, Footer, content_length, read_footer, write_footer
from argofile.core.platform_service import PlatformService
from argofile.security.kdf import KdfParams


@pytest.fixture
def platform(tmp_path):
    return PlatformService(home=tmp_path / "home")


@pytest.fixture
def service(platform):
    return ContainerService(platform, kdf_params=KdfParams(iterations=1000))


@pytest.fixture
def books():
    return {
        "settings": {"company": {"name": "Acme Ltd"}},
        "accountants": [{"name": "Alice"}],
        "customers": [{"id": "C-1", "name": "Globex"}],
        "invoices": [{"id": "INV-1", "customer": "C-1", "lines": [{"qty": 2, "price": "49.95"}]}],
    }


def _temp_leftovers(directory):
    return [p for p in directory.iterdir() if p.name.endswith(".tmp")]


def test_encrypted_company_file_lifecycle(service, books, tmp_path):
    """Save with a password, read the footer without one, then open."""
    path = tmp_path / "a.argo"
    service.save(path, books, "Secret123")

    footer = service.peek_footer(path)
    assert footer.company_name == "Acme Ltd"
    assert footer.is_encrypted is True
    assert footer.accountants == ["Alice"]

    with pytest.raises(PasswordRequiredError):
        service.open(path)
    with pytest.raises(AuthenticationFailureError):
        service.open(path, "WrongPass1")
    assert service.open(path, "Secret123") == books


def test_interrupted_save_keeps_previous_version(service, books, tmp_path):
    path = tmp_path / "a.argo"
    service.save(path, books, "Secret123")
    before = path.read_bytes()

    changed = dict(books, invoices=[])
    with patch("argofile.core.platform_service.os.replace", side_effect=OSError("power lost")):
        with pytest.raises(IOFailureError):
            service.save(path, changed, "Secret123")

    assert path.read_bytes() == before
    assert service.open(path, "Secret123") == books
    assert _temp_leftovers(tmp_path) == []


def test_change_password_scenario(service, books, tmp_path):
    path = tmp_path / "a.argo"
    service.save(path, books, "OldPass123")
    old_salt = service.peek_footer(path).salt

    service.change_password(path, "OldPass123", "NewPass456")

    assert service.peek_footer(path).salt != old_salt
    assert service.verify_password(path, "NewPass456") is True
    assert service.verify_password(path, "OldPass123") is False
    assert service.open(path, "NewPass456") == books
    with pytest.raises(AuthenticationFailureError):
        service.open(path, "OldPass123")


def test_tampered_footer_salt_is_rejected(service, books, tmp_path):
    path = tmp_path / "a.argo"
    service.save(path, books, "Secret123")

    with open(path, "rb") as f:
        footer = read_footer(f)
        length = content_length(f)
        f.seek(0)
        payload = f.read(length)

    footer.salt = bytes(32)
    with open(path, "wb") as f:
        f.write(payload)
        write_footer(f, footer)

    with pytest.raises(AuthenticationFailureError):
        service.open(path, "Secret123")


def test_tampered_kdf_parameters_keep_document_usable(service, books, tmp_path):
    path = tmp_path / "a.argo"
    service.save(path, books, "Secret123")

    with open(path, "rb") as f:
        footer = read_footer(f)
        length = content_length(f)
        f.seek(0)
        payload = f.read(length)

    footer.kdf = {"algo": "argon2id", "iterations": 1, "memoryCost": 1, "parallelism": 1}
    with open(path, "wb") as f:
        f.write(payload)
        write_footer(f, footer)

    doc = CompanyDocument(service)
    with pytest.raises(PasswordRequiredError):
        doc.open(path)
    with pytest.raises(CorruptDataError):
        doc.provide_password("Secret123")
    assert doc.state is DocumentState.PASSWORD_REQUIRED

    good = tmp_path / "b.argo"
    service.save(good, books, "Secret123")
    assert doc.open(good, "Secret123") == books
    assert doc.state is DocumentState.OPEN


def test_document_session_edit_and_reopen(service, books, tmp_path):
    path = tmp_path / "a.argo"
    service.save(path, books, "Secret123")

    doc = CompanyDocument(service)
    with pytest.raises(PasswordRequiredError):
        doc.open(path)
    data = doc.provide_password("Secret123")
    data["customers"].append({"id": "C-2", "name": "Initech"})
    doc.mark_changed()
    doc.save()
    doc.close()
    assert doc.state is DocumentState.CLOSED

    reopened = CompanyDocument(service)
    assert len(reopened.open(path, "Secret123")["customers"]) == 2


def test_backup_export_and_restore(service, books, tmp_path):
    attachments = tmp_path / "attachments"
    (attachments / "invoices").mkdir(parents=True)
    (attachments / "invoices" / "INV-1.pdf").write_bytes(b"%PDF INV-1")

    backup = tmp_path / "acme.argobk"
    service.create_backup_archive(backup, books, "Secret123", attachments_dir=attachments)
    assert service.peek_footer(backup).kind == "backup"

    dest = tmp_path / "restored"
    assert service.restore_from_backup_archive(backup, "Secret123", attachments_destination=dest) == books
    assert (dest / "invoices" / "INV-1.pdf").read_bytes() == b"%PDF INV-1"


def test_malicious_backup_is_refused(service, platform, tmp_path):
    """A backup whose archive escapes the staging directory is never extracted."""
    out = io.BytesIO()
    with tarfile.open(fileobj=out, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for name, data in (("dataset.json", b"{}"), ("../evil.txt", b"owned")):
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    out.seek(0)

    backup = tmp_path / "evil.argobk"
    with open(backup, "wb") as f:
        f.write(compress(out).getvalue())
        write_footer(f, Footer(company_name="Evil", kind=KIND_BACKUP))

    with pytest.raises(UnsafeArchiveEntryError):
        service.restore_from_backup_archive(backup)
    assert not (platform.temp_path / "evil.txt").exists()
    assert list(platform.temp_path.iterdir()) == []
