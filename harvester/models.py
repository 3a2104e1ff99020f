"""
Value types shared by the collector and the download orchestrator
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

MEDIA_KINDS = ('all', 'image', 'video')

STATUS_OK = 'ok'
STATUS_NOT_READY = 'not_ready'

EVENT_RUNNING = 'running'
EVENT_IDLE = 'idle'
EVENT_ERROR = 'error'
EVENT_DEBUG = 'debug'


@dataclass(frozen=True)
class CollectedItem:
    """One media reference discovered on the gallery page."""
    url: str
    kind: str
    container_id: int
    poster_url: str = ''
    group_id: int = 0


@dataclass
class CollectResult:
    status: str
    items: List[CollectedItem] = field(default_factory=list)
    message: str = ''
    debug: Optional[List[str]] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


@dataclass(frozen=True)
class QueueItem:
    url: str
    kind: str
    filename: str
    label: str
    group_id: int


@dataclass
class TransferOutcome:
    success: bool
    message: str = ''


@dataclass
class TransferResult:
    url: str
    success: bool
    message: str = ''
    filename: str = ''


@dataclass
class StatusEvent:
    text: str
    state: str
    timestamp: int
    progress: Optional[Dict[str, int]] = None

    def to_message(self) -> Dict:
        return {
            'type': 'STATUS',
            'text': self.text,
            'state': self.state,
            'timestamp': self.timestamp,
            'progress': dict(self.progress) if self.progress else None,
        }
