"""argofile: secure local container files for Argo Books company data."""

from .config import APP_VERSION as __version__

__all__ = ["__version__"]
