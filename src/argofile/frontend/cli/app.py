"""The ``argofile`` command.

Inspect, create, convert and back up company files from a terminal.

Passwords are taken from ``--password``, then the ``ARGOFILE_PASSWORD``
environment variable, then an interactive prompt.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple

from argofile import __version__
from argofile.config import Settings
from argofile.core.exceptions import (
    ArgoFileError,
    InvalidArgumentError,
    OperationCancelledError,
    PasswordRequiredError,
)
from argofile.core.footer import Footer
from argofile.core.tasks import TaskHandle
from argofile.security import password as password_rules

from .context import AppContext, build_context
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

PASSWORD_ENV = "ARGOFILE_PASSWORD"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _read_password(args: argparse.Namespace, prompt: str = "Password: ", confirm: bool = False) -> str:
    if getattr(args, "password", None):
        return args.password
    env = os.environ.get(PASSWORD_ENV)
    if env:
        return env
    secret = getpass.getpass(prompt)
    if confirm and getpass.getpass("Confirm password: ") != secret:
        raise InvalidArgumentError("Passwords do not match.")
    return secret


def _new_password(args: argparse.Namespace) -> Optional[str]:
    """Password for a file being written, or None to leave it unencrypted."""
    if getattr(args, "password", None) or os.environ.get(PASSWORD_ENV):
        return _read_password(args)
    if getattr(args, "encrypt", False):
        return _read_password(args, "New password: ", confirm=True)
    return None


def _wait(handle: TaskHandle) -> Any:
    try:
        return handle.result()
    except KeyboardInterrupt:
        handle.cancel()
        raise


def _open_document(ctx: AppContext, args: argparse.Namespace) -> Tuple[Any, Optional[str]]:
    """Open ``args.path`` into the document; returns (dataset, password used)."""
    doc = ctx.document
    try:
        return _wait(doc.open_async(args.path)), None
    except PasswordRequiredError:
        secret = _read_password(args)
        return doc.provide_password(secret), secret


def _refuse_overwrite(args: argparse.Namespace) -> None:
    if Path(args.path).exists() and not args.force:
        raise InvalidArgumentError(f"{args.path} already exists (use --force to overwrite).")


def _format_footer(path: str, footer: Footer) -> str:
    lines = [
        f"File:        {path}",
        f"Company:     {footer.company_name}",
        f"Kind:        {footer.kind}",
        f"Encrypted:   {'yes' if footer.is_encrypted else 'no'}",
        f"Version:     {footer.version} (format {footer.format_version})",
        f"Created:     {footer.created_at.isoformat()}",
        f"Modified:    {footer.modified_at.isoformat()}",
    ]
    if footer.accountants:
        lines.append(f"Accountants: {', '.join(footer.accountants)}")
    if footer.kdf:
        lines.append(f"KDF:         {footer.kdf.get('algo')} ({footer.kdf.get('iterations')} iterations)")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_info(ctx: AppContext, args: argparse.Namespace) -> int:
    footer = ctx.service.peek_footer(args.path)
    if args.json:
        print(json.dumps(footer.to_dict(), indent=2))
    else:
        print(_format_footer(args.path, footer))
    return 0


def cmd_create(ctx: AppContext, args: argparse.Namespace) -> int:
    _refuse_overwrite(args)
    dataset = {"settings": {"company": {"name": args.name}}, "accountants": []}
    footer = ctx.service.save(args.path, dataset, _new_password(args))
    print(f"Created {args.path} for {footer.company_name!r}")
    return 0


def cmd_import(ctx: AppContext, args: argparse.Namespace) -> int:
    try:
        dataset = json.loads(Path(args.source).read_text(encoding="utf-8"))
    except OSError as exc:
        raise InvalidArgumentError(f"Cannot read {args.source}: {exc}") from exc
    except ValueError as exc:
        raise InvalidArgumentError(f"{args.source} is not valid JSON: {exc}") from exc

    footer = ctx.service.save(args.path, dataset, _new_password(args), company_name=args.name)
    print(f"Imported {args.source} into {args.path} ({footer.company_name!r})")
    return 0


def cmd_export(ctx: AppContext, args: argparse.Namespace) -> int:
    dataset, _ = _open_document(ctx, args)
    text = json.dumps(dataset, indent=2, ensure_ascii=False)
    if args.output == "-":
        print(text)
    else:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        print(f"Exported {args.path} to {args.output}")
    return 0


def cmd_change_password(ctx: AppContext, args: argparse.Namespace) -> int:
    doc = ctx.document
    _, old = _open_document(ctx, args)

    if args.remove:
        new = None
    else:
        new = args.new_password or getpass.getpass("New password: ")
        if not args.new_password and getpass.getpass("Confirm password: ") != new:
            raise InvalidArgumentError("Passwords do not match.")

    _wait(doc.change_password_async(old, new))
    print(f"{'Removed password from' if new is None else 'Changed password of'} {args.path}")
    return 0


def cmd_backup(ctx: AppContext, args: argparse.Namespace) -> int:
    _, file_password = _open_document(ctx, args)
    backup_password = args.backup_password or (file_password if args.encrypt else None)
    footer = ctx.document.export_backup(args.backup, backup_password, attachments_dir=args.attachments)
    print(f"Backed up {footer.company_name!r} to {args.backup}")
    return 0


def cmd_restore(ctx: AppContext, args: argparse.Namespace) -> int:
    _refuse_overwrite(args)
    if ctx.service.is_encrypted(args.backup):
        password = _read_password(args, "Backup password: ")
    else:
        password = None
    dataset = ctx.service.restore_from_backup_archive(
        args.backup, password, attachments_destination=args.attachments_dest
    )
    footer = ctx.service.save(args.path, dataset, password)
    print(f"Restored {footer.company_name!r} to {args.path}")
    return 0


def cmd_strength(ctx: AppContext, args: argparse.Namespace) -> int:
    secret = args.value if args.value is not None else getpass.getpass("Password to check: ")
    score = password_rules.strength_score(secret)
    print(f"Score: {score}/100 ({password_rules.strength_label(score)})")
    errors = password_rules.validate(secret)
    for error in errors:
        print(f"  - {error}")
    return 0 if not errors else 1


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="argofile",
        description="Secure local container files for Argo Books company data.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("info", help="Show the unencrypted footer of a file")
    p.add_argument("path")
    p.add_argument("--json", action="store_true", help="Print the raw footer as JSON")
    p.set_defaults(func=cmd_info)

    p = sub.add_parser("create", help="Create an empty company file")
    p.add_argument("path")
    p.add_argument("--name", required=True, help="Company name")
    p.add_argument("--encrypt", action="store_true", help="Prompt for a password")
    p.add_argument("--password")
    p.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p.set_defaults(func=cmd_create)

    p = sub.add_parser("import", help="Store a JSON dataset in a company file")
    p.add_argument("source", help="JSON file to read")
    p.add_argument("path", help="Company file to write")
    p.add_argument("--name", help="Company name (defaults to the dataset settings)")
    p.add_argument("--encrypt", action="store_true", help="Prompt for a password")
    p.add_argument("--password")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("export", help="Decode a company file to JSON")
    p.add_argument("path")
    p.add_argument("output", nargs="?", default="-", help="Output file ('-' for stdout)")
    p.add_argument("--password")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("change-password", help="Re-encrypt a company file under a new password")
    p.add_argument("path")
    p.add_argument("--password", help="Current password")
    p.add_argument("--new-password")
    p.add_argument("--remove", action="store_true", help="Remove encryption instead")
    p.set_defaults(func=cmd_change_password)

    p = sub.add_parser("backup", help="Export a company file as a backup archive")
    p.add_argument("path")
    p.add_argument("backup")
    p.add_argument("--attachments", help="Directory of attachments to include")
    p.add_argument("--password", help="Password of the company file")
    p.add_argument("--encrypt", action="store_true", help="Encrypt the backup with the file's password")
    p.add_argument("--backup-password", help="Encrypt the backup with this password")
    p.set_defaults(func=cmd_backup)

    p = sub.add_parser("restore", help="Restore a backup archive into a company file")
    p.add_argument("backup")
    p.add_argument("path")
    p.add_argument("--attachments-dest", help="Where to copy restored attachments")
    p.add_argument("--password")
    p.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p.set_defaults(func=cmd_restore)

    p = sub.add_parser("strength", help="Score a password")
    p.add_argument("value", nargs="?")
    p.set_defaults(func=cmd_strength)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(logging.DEBUG if args.verbose else settings.log_level)

    try:
        ctx = build_context(settings)
    except ArgoFileError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    try:
        return args.func(ctx, args)
    except OperationCancelledError:
        print("Cancelled.", file=sys.stderr)
        return 130
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    except ArgoFileError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        ctx.close()


if __name__ == "__main__":
    sys.exit(main())
