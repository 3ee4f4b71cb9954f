"""codevolve — autonomous code evolution for a single repository."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("codevolve")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
