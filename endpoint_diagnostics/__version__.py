"""Package version and the persisted baseline record format version."""

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
import tomllib

try:
    __version__ = version("endpoint-diagnostics")
except PackageNotFoundError:
    # Source checkout without installation
    try:
        with open(Path(__file__).parent.parent / "pyproject.toml", "rb") as fh:
            __version__ = tomllib.load(fh)["project"]["version"]
    except (OSError, KeyError, tomllib.TOMLDecodeError):
        __version__ = "0.0.0-dev"

# Bumped when the baseline JSON layout changes, independent of __version__
__baseline_format_version__ = "1.0.0"
