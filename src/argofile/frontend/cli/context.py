"""Small helper to build the argofile runtime context for the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from argofile.config import Settings
from argofile.core.container import ContainerService
from argofile.core.document import CompanyDocument
from argofile.core.platform_service import PlatformService
from argofile.core.serialization import JsonSerializer
from argofile.core.tasks import BackgroundRunner
from argofile.security.kdf import KdfParams


@dataclass
class AppContext:
    """Container for runtime objects the commands need."""

    settings: Settings
    platform: PlatformService
    service: ContainerService
    document: CompanyDocument
    runner: BackgroundRunner

    def close(self) -> None:
        self.document.close()
        self.runner.shutdown()


def build_context(settings: Optional[Settings] = None) -> AppContext:
    """
    Wire the platform service, container service and document once.

    Settings come from the environment unless given explicitly, so
    ``ARGOFILE_HOME`` and ``ARGOFILE_KDF_ITERATIONS`` apply to every
    command without extra flags.
    """
    settings = settings or Settings.from_env()

    platform = PlatformService(home=settings.home)
    service = ContainerService(
        platform,
        serializer=JsonSerializer(),
        kdf_params=KdfParams(algo=settings.kdf_algo, iterations=settings.kdf_iterations),
        compression_level=settings.compression_level,
    )
    runner = BackgroundRunner()
    document = CompanyDocument(service, runner=runner)
    return AppContext(
        settings=settings,
        platform=platform,
        service=service,
        document=document,
        runner=runner,
    )
