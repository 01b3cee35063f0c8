"""Data types shared by the decoder, composer and orchestrator."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple, Union

NO_SUBJECT = "(no subject)"


@dataclass(frozen=True)
class Attachment:
    """A decoded attachment. ``content`` is never mutated after decoding."""
    filename: str
    content_type: str
    content: bytes
    content_id: Optional[str] = None
    disposition: Optional[str] = None  # "inline", "attachment" or None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def is_inline(self) -> bool:
        return self.disposition == "inline" and bool(self.content_id)


@dataclass(frozen=True)
class StructuredEmail:
    """A decoded email message."""
    subject: str = NO_SUBJECT
    sender: str = ""
    to: Tuple[str, ...] = ()
    cc: Tuple[str, ...] = ()
    date: Optional[datetime] = None
    text_body: str = ""
    html_body: Optional[str] = None
    attachments: Tuple[Attachment, ...] = ()
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def primary_body(self) -> str:
        """'html' when an HTML body is present, otherwise 'text'."""
        return "html" if self.html_body else "text"

    def inline_attachments(self) -> List[Attachment]:
        return [att for att in self.attachments if att.is_inline]


# Tagged MIME tree produced from the tokenizer output

@dataclass(frozen=True)
class MimeLeaf:
    content_type: str
    params: Mapping[str, str]
    headers: Mapping[str, str]
    payload: bytes
    depth: int = 0
    filename: Optional[str] = None


@dataclass(frozen=True)
class MimeMultipart:
    content_type: str
    headers: Mapping[str, str]
    children: Tuple["MimeNode", ...]
    depth: int = 0


MimeNode = Union[MimeLeaf, MimeMultipart]


class ItemStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemStatus.SUCCESS, ItemStatus.ERROR)


class RunState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class LogLevel(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


@dataclass(frozen=True)
class LogEvent:
    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ProgressEvent:
    processed: int
    total: int
    current: Optional[str] = None  # name of the file that just finished

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return 100.0 * self.processed / self.total


@dataclass
class BatchItemResult:
    """Outcome of one input file within a run."""
    index: int
    name: str
    size: int = 0
    batch_index: int = 0
    status: ItemStatus = ItemStatus.PENDING
    output: Optional[bytes] = None
    error: Optional[str] = None
    page_count: int = 0
    warnings: List[str] = field(default_factory=list)
    attempts: int = 0
    subject: str = ""
    date: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ItemStatus.SUCCESS


@dataclass(frozen=True)
class MergedOutput:
    """A merged PDF covering one batch (``batch_index``) or the whole run (None)."""
    name: str
    data: bytes
    page_count: int
    sources: Tuple[str, ...]
    batch_index: Optional[int] = None


@dataclass(frozen=True)
class RunSummary:
    total: int
    processed: int
    successful: int
    failed: int
    pending: int
    merged: int
    state: RunState


def summarize_counts(items: List[BatchItemResult]) -> Dict[ItemStatus, int]:
    counts = {status: 0 for status in ItemStatus}
    for item in items:
        counts[item.status] += 1
    return counts
