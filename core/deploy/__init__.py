"""
Program deployment: file watching, payload comparison and redeploy.
"""

from .program import deploy_to_bus, read_compiled
from .watcher import DeployWatcher, FileWatcher

__all__ = [
    "deploy_to_bus",
    "read_compiled",
    "DeployWatcher",
    "FileWatcher",
]
