from .config import ConfigStore
from .matrix import MatrixExpander
from .model import ChangeSet, Command, Commands, Instance, Job, Mode
from .modes import Engine, RunMode, run, select_mode
from .resolver import ChangeResolver
from .settings import Settings

__all__ = [
    "ConfigStore",
    "MatrixExpander",
    "ChangeSet",
    "Command",
    "Commands",
    "Instance",
    "Job",
    "Mode",
    "Engine",
    "RunMode",
    "run",
    "select_mode",
    "ChangeResolver",
    "Settings",
]
