"""idxflow - Interaction code authentication flows for Identity Engine."""

from idxflow.core.version import __version__

__all__ = ["__version__"]
