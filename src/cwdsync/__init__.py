"""cwdsync - keep repository tabs in step with an embedded shell's directory."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cwdsync")
except PackageNotFoundError:
    __version__ = "0.0.0"
