"""
Version utility for Voice Input.

Provides a single source of truth for version information,
reading from installed package metadata or pyproject.toml.
"""

from pathlib import Path

DISTRIBUTION_NAME = "voice-input"


def get_version() -> str:
    """
    Get the package version.

    Priority:
    1. importlib.metadata.version() - when installed as a package
    2. pyproject.toml - when running from a source checkout

    Returns:
        Version string (e.g., "0.1.0") or "dev" if unavailable
    """
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pass

    # Fallback: read from pyproject.toml
    import tomllib

    for parent in Path(__file__).resolve().parents:
        pyproject_path = parent / "pyproject.toml"
        if not pyproject_path.exists():
            continue
        try:
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError):
            break
        project = data.get("project", {})
        if project.get("name") == DISTRIBUTION_NAME:
            return project.get("version", "dev")
        break

    return "dev"


# Module-level constant for easy import
__version__ = get_version()
