"""Isolated execution of the per-file pipeline.

Work is sent to an executor as a plain request message and comes back as a
reply message; nothing is shared between the orchestrator and a worker.
"""

import asyncio
import logging
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from .composer import compose_email
from .config import ConversionConfig
from .decoder import decode_email
from .errors import ComposeError, ParseError, describe_warning
from .merge import merge_pdfs
from .rasterizer import get_rasterizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionRequest:
    name: str
    data: bytes
    config: ConversionConfig = field(default_factory=ConversionConfig)


@dataclass(frozen=True)
class ConversionReply:
    name: str
    pdf: Optional[bytes] = None
    page_count: int = 0
    subject: str = ""
    date: Optional[datetime] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None and self.pdf is not None


def convert_message(request: ConversionRequest) -> ConversionReply:
    """
    Decode and compose one file. Runs inside the worker.

    Per-file failures are returned as error replies, never raised.
    """
    collected: List[Warning] = []
    try:
        email = decode_email(request.data, request.config, collected)
        document = compose_email(email, request.config, get_rasterizer(request.config), collected)
    except (ParseError, ComposeError) as e:
        return ConversionReply(
            name=request.name,
            error=str(e),
            error_type=type(e).__name__,
            warnings=tuple(describe_warning(w) for w in collected),
        )
    except Exception as e:
        logger.exception(f"Unexpected error converting {request.name}")
        return ConversionReply(
            name=request.name,
            error=f"unexpected error: {e}",
            error_type=type(e).__name__,
            warnings=tuple(describe_warning(w) for w in collected),
        )

    return ConversionReply(
        name=request.name,
        pdf=document.data,
        page_count=document.page_count,
        subject=email.subject,
        date=email.date,
        warnings=tuple(describe_warning(w) for w in collected),
    )


def merge_message(documents: Sequence[bytes]) -> bytes:
    """Merge request handler. Runs inside the worker."""
    return merge_pdfs(list(documents))


def create_executor(kind: str, max_workers: int) -> Optional[Executor]:
    """Executor for a configured kind; None means run inline."""
    if kind == "process":
        return ProcessPoolExecutor(max_workers=max_workers)
    if kind == "thread":
        return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="eml-worker")
    return None


class WorkerPool:
    """
    Dispatches conversion and merge requests to an executor and awaits
    the replies.
    """

    def __init__(self, kind: str = "process", max_workers: int = 4):
        self.kind = kind
        self.max_workers = max_workers
        self._executor: Optional[Executor] = None

    def __enter__(self) -> "WorkerPool":
        self._executor = create_executor(self.kind, self.max_workers)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.shutdown()
        return False

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    async def _submit(self, fn: Callable, *args):
        if self._executor is None:
            return fn(*args)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    async def convert(self, request: ConversionRequest) -> ConversionReply:
        return await self._submit(convert_message, request)

    async def merge(self, documents: Sequence[bytes]) -> bytes:
        return await self._submit(merge_message, list(documents))
