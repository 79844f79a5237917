"""Input stream: lazy sources of records and the shared claim cursor."""

from .lock import ETA, Claim, InputLock
from .source import InputList, InputRecord, InputSource

__all__ = ["ETA", "Claim", "InputList", "InputLock", "InputRecord", "InputSource"]
