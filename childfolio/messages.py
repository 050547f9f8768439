"""Service feedback that is reported to the caller instead of raised."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class MessageLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ServiceMessage:
    level: MessageLevel
    text: str
    instrument_id: Optional[str] = None


def has_errors(messages: Iterable[ServiceMessage]) -> bool:
    return any(message.level is MessageLevel.ERROR for message in messages)
