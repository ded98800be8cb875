"""moduletree - a virtual module tree with on-demand resolution.

    from moduletree import make_installer

    install = make_installer()
    require = install({"node_modules": {"pkg": {"index.js": factory}}})
    require("pkg")
"""

from .config import InstallerOptions
from .config import load_options
from .errors import FetchError
from .errors import InstallerError
from .errors import InvalidFragmentError
from .errors import ModuleNotFoundError
from .evaluation import MISSING
from .evaluation import Module
from .evaluation import Require
from .installer import Installer
from .installer import make_installer
from .prefetch import FetchRequest
from .scheduler import ManualDefer
from .scheduler import asyncio_defer

__version__ = "0.1.0"

__all__ = [
    "make_installer",
    "Installer",
    "InstallerOptions",
    "load_options",
    "Require",
    "Module",
    "MISSING",
    "FetchRequest",
    "ManualDefer",
    "asyncio_defer",
    "InstallerError",
    "ModuleNotFoundError",
    "InvalidFragmentError",
    "FetchError",
]
