"""Runtime/source version consistency check."""

import tomllib
from pathlib import Path


def check_version_consistency(
    pyproject_path: Path | None = None,
) -> tuple[bool, str]:
    """Check if the installed package version matches pyproject.toml.

    Returns:
        Tuple of (is_consistent, message).  A mismatch means an editable
        install or deployed copy is older than the checked-out source.
    """
    from . import __version__ as runtime_version

    if pyproject_path is None:
        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"

    if not pyproject_path.exists():
        return (
            False,
            "Cannot find pyproject.toml for version comparison",
        )

    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        return False, f"Failed to read version from pyproject.toml: {e}"

    source_version = data.get("project", {}).get("version", "unknown")

    if runtime_version != source_version:
        return False, (
            f"Version mismatch detected! "
            f"Runtime: {runtime_version}, Source: {source_version}. "
            f"Reinstall with: pip install -e ."
        )

    return True, f"Version verified: {runtime_version}"
