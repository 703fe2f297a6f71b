from .knockutil import KnockSequence, KnockStep, Version

__version__ = Version
