"""
quickqc package initialisation.

* ``quickqc.__version__`` is resolved from the installed distribution so the
  CLI, logs and reports agree on one value.
* :func:`quickqc.config.load_config` is re-exported for convenience::

      from quickqc import load_config
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__: str = version("quickqc")
except PackageNotFoundError:
    # Source tree without installed metadata.
    __version__ = "0.0.0"

from .config import load_config  # noqa: E402

__all__: list[str] = ["load_config", "__version__"]
