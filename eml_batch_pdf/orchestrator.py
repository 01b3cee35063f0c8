"""Batch conversion pipeline: batching, bounded concurrency, merging,
pause/resume/cancel and progress reporting."""

import asyncio
import logging
import uuid
from collections import deque
from concurrent.futures import BrokenExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Iterable, List, Optional, Sequence, Tuple

from .config import ConversionConfig
from .errors import MergeError
from .files import FileHandle
from .models import (
    BatchItemResult,
    ItemStatus,
    LogEvent,
    LogLevel,
    MergedOutput,
    ProgressEvent,
    RunState,
    RunSummary,
    summarize_counts,
)
from .printing import print_pdf
from .worker import ConversionReply, ConversionRequest, WorkerPool

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass
class RunCallbacks:
    """Optional hooks. All of them are called on the event loop thread."""
    on_file_complete: Optional[Callable[[BatchItemResult, bytes], None]] = None
    on_file_error: Optional[Callable[[BatchItemResult], None]] = None
    on_merged: Optional[Callable[[MergedOutput], None]] = None
    on_progress: Optional[Callable[[ProgressEvent], None]] = None
    on_log: Optional[Callable[[LogEvent], None]] = None
    on_state_change: Optional[Callable[[RunState], None]] = None


class BatchRun:
    """
    State of one pass of the pipeline over a file set.

    Only the orchestrator mutates a run; callers get read-only views.
    """

    def __init__(self, files: Sequence[FileHandle], batch_size: int):
        self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
        self._items: List[BatchItemResult] = []
        for index, handle in enumerate(files):
            self._items.append(BatchItemResult(
                index=index,
                name=handle.name,
                batch_index=index // batch_size,
            ))
        self.total = len(self._items)
        self.processed_count = 0
        self.cancelled = False
        self.is_paused = False
        self.state = RunState.IDLE
        self._events: List[LogEvent] = []
        self._merged: List[MergedOutput] = []
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    @property
    def items(self) -> Tuple[BatchItemResult, ...]:
        return tuple(self._items)

    @property
    def events(self) -> Tuple[LogEvent, ...]:
        return tuple(self._events)

    @property
    def merged_outputs(self) -> Tuple[MergedOutput, ...]:
        return tuple(self._merged)

    @property
    def successful(self) -> Tuple[BatchItemResult, ...]:
        return tuple(item for item in self._items if item.status == ItemStatus.SUCCESS)

    @property
    def failed(self) -> Tuple[BatchItemResult, ...]:
        return tuple(item for item in self._items if item.status == ItemStatus.ERROR)

    @property
    def progress(self) -> ProgressEvent:
        return ProgressEvent(processed=self.processed_count, total=self.total)

    @property
    def batch_count(self) -> int:
        if not self._items:
            return 0
        return self._items[-1].batch_index + 1

    def batch_items(self, batch_index: int) -> List[BatchItemResult]:
        return [item for item in self._items if item.batch_index == batch_index]

    def summary(self) -> RunSummary:
        counts = summarize_counts(self._items)
        return RunSummary(
            total=self.total,
            processed=self.processed_count,
            successful=counts[ItemStatus.SUCCESS],
            failed=counts[ItemStatus.ERROR],
            pending=sum(1 for item in self._items if not item.status.is_terminal),
            merged=len(self._merged),
            state=self.state,
        )


def partition(files: Sequence, batch_size: int) -> List[List]:
    """Split into consecutive batches; the last one may be smaller."""
    return [list(files[i:i + batch_size]) for i in range(0, len(files), batch_size)]


class BatchOrchestrator:
    """
    Drives files through decode -> compose -> (merge) in sequential
    batches, with at most ``concurrency_per_batch`` files in flight.
    """

    def __init__(
        self,
        config: Optional[ConversionConfig] = None,
        callbacks: Optional[RunCallbacks] = None,
        printer: Optional[Callable[[bytes, str], bool]] = None,
    ):
        self.config = config or ConversionConfig()
        self.callbacks = callbacks or RunCallbacks()
        self.printer = printer or print_pdf
        self._run: Optional[BatchRun] = None
        self._resume_event: Optional[asyncio.Event] = None

    @property
    def run_state(self) -> Optional[BatchRun]:
        """The current or most recent run, if any."""
        return self._run

    @property
    def is_active(self) -> bool:
        return self._run is not None and self._run.state in (RunState.RUNNING, RunState.PAUSED)

    # Controls

    def pause(self) -> None:
        """Stop dequeuing new files. In-flight files still finish."""
        run = self._run
        if run is None or run.state != RunState.RUNNING:
            return
        run.is_paused = True
        self._resume_event.clear()
        self._set_state(run, RunState.PAUSED)
        self._log(run, LogLevel.INFO, "Processing paused")

    def resume(self) -> None:
        run = self._run
        if run is None or run.state != RunState.PAUSED:
            return
        run.is_paused = False
        self._set_state(run, RunState.RUNNING)
        self._resume_event.set()
        self._log(run, LogLevel.INFO, "Processing resumed")

    def cancel(self) -> None:
        """Stop dequeuing permanently. In-flight files still finish and are recorded."""
        run = self._run
        if run is None or not self.is_active:
            return
        run.cancelled = True
        run.is_paused = False
        self._resume_event.set()
        self._log(run, LogLevel.WARNING, "Cancellation requested")

    def clear(self) -> None:
        """Forget the previous run."""
        if self.is_active:
            raise RuntimeError("cannot clear while a run is in progress")
        self._run = None

    # Pipeline

    async def run(self, files: Iterable[FileHandle]) -> BatchRun:
        """
        Convert every file.

        Args:
            files: Input file handles, processed in order

        Returns:
            The finished BatchRun

        Raises:
            ConfigurationError: if the configuration is invalid
            RuntimeError: if a run is already in progress
        """
        config = self.config.validate()
        if self.is_active:
            raise RuntimeError("a run is already in progress")

        files = list(files)
        run = BatchRun(files, config.batch_size)
        self._run = run
        self._resume_event = asyncio.Event()
        self._resume_event.set()

        run.started_at = datetime.now()
        self._set_state(run, RunState.RUNNING)
        batches = partition(list(zip(run.items, files)), config.batch_size)
        self._log(run, LogLevel.INFO, f"Starting conversion of {run.total} files in {len(batches)} batches")
        self._notify(self.callbacks.on_progress, run.progress)

        try:
            with WorkerPool(config.executor, config.concurrency_per_batch) as pool:
                for batch_index, batch in enumerate(batches):
                    if run.cancelled:
                        break
                    self._log(
                        run, LogLevel.INFO,
                        f"Processing batch {batch_index + 1}/{len(batches)} ({len(batch)} files)"
                    )
                    await self._run_batch(run, pool, batch)

                    if config.merge_strategy == "per_batch":
                        await self._merge(run, pool, run.batch_items(batch_index), batch_index)

                if config.merge_strategy == "all":
                    await self._merge(run, pool, list(run.items), None)
        except BaseException:
            # interrupted from outside (task cancellation, KeyboardInterrupt)
            run.cancelled = True
            raise
        finally:
            run.finished_at = datetime.now()
            self._set_state(run, RunState.CANCELLED if run.cancelled else RunState.COMPLETED)

        summary = run.summary()
        self._log(
            run,
            LogLevel.WARNING if run.cancelled else LogLevel.INFO,
            f"{'Cancelled' if run.cancelled else 'Finished'}: {summary.successful} succeeded, "
            f"{summary.failed} failed, {summary.pending} not processed"
        )
        return run

    async def _run_batch(
        self,
        run: BatchRun,
        pool: WorkerPool,
        batch: List[Tuple[BatchItemResult, FileHandle]],
    ) -> None:
        queue: Deque[Tuple[BatchItemResult, FileHandle]] = deque(batch)

        async def slot() -> None:
            while True:
                while not self._resume_event.is_set():
                    await self._resume_event.wait()
                if run.cancelled or not queue:
                    return
                item, handle = queue.popleft()
                await self._process(run, pool, item, handle)

        slots = min(self.config.concurrency_per_batch, len(batch))
        # barrier: the next batch starts only when every slot has settled
        await asyncio.gather(*(slot() for _ in range(slots)))

    async def _process(
        self,
        run: BatchRun,
        pool: WorkerPool,
        item: BatchItemResult,
        handle: FileHandle,
    ) -> None:
        item.status = ItemStatus.PROCESSING
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, handle.read)
        except Exception as e:
            reply = ConversionReply(name=item.name, error=f"could not read file: {e}", error_type=type(e).__name__)
        else:
            item.size = len(data)
            try:
                reply = await self._convert(pool, item, data)
            except Exception as e:
                logger.exception(f"Unexpected error converting {item.name}")
                reply = ConversionReply(name=item.name, error=f"unexpected error: {e}", error_type=type(e).__name__)
        await self._record(run, item, reply)

    async def _convert(self, pool: WorkerPool, item: BatchItemResult, data: bytes) -> ConversionReply:
        attempts = self.config.retry_attempts + 1
        for attempt in range(attempts):
            item.attempts = attempt + 1
            try:
                reply = await pool.convert(ConversionRequest(item.name, data, self.config))
            except (BrokenExecutor, OSError, RuntimeError) as e:
                reply = ConversionReply(name=item.name, error=f"worker failed: {e}", error_type=type(e).__name__)

            # a message that does not parse will not parse on retry either
            if reply.ok or reply.error_type == "ParseError" or attempt + 1 == attempts:
                return reply

            delay = self.config.retry_backoff * (2 ** attempt)
            logger.info(f"Retrying {item.name} in {delay:.2f}s ({reply.error})")
            await asyncio.sleep(delay)
        return reply

    async def _record(self, run: BatchRun, item: BatchItemResult, reply: ConversionReply) -> None:
        item.warnings.extend(reply.warnings)
        for warning in reply.warnings:
            self._log(run, LogLevel.WARNING, f"{item.name}: {warning}")

        if reply.ok:
            item.status = ItemStatus.SUCCESS
            item.output = reply.pdf
            item.page_count = reply.page_count
            item.subject = reply.subject
            item.date = reply.date
            self._log(run, LogLevel.SUCCESS, f"Converted {item.name} ({reply.page_count} pages)")
        else:
            item.status = ItemStatus.ERROR
            item.error = f"{item.name}: {reply.error}"
            self._log(run, LogLevel.ERROR, f"Failed to convert {item.error}")

        run.processed_count += 1
        self._notify(
            self.callbacks.on_progress,
            ProgressEvent(processed=run.processed_count, total=run.total, current=item.name),
        )

        if not reply.ok:
            self._notify(self.callbacks.on_file_error, item)
            return

        if self.config.merge_strategy == "none":
            self._notify(self.callbacks.on_file_complete, item, reply.pdf)
            if self.config.auto_print:
                await self._print(reply.pdf, item.name)

    async def _merge(
        self,
        run: BatchRun,
        pool: WorkerPool,
        items: List[BatchItemResult],
        batch_index: Optional[int],
    ) -> Optional[MergedOutput]:
        """Merge successful outputs in input order. Failed files contribute nothing."""
        sources = [item for item in items if item.succeeded and item.output is not None]
        label = f"batch {batch_index + 1}" if batch_index is not None else "all batches"
        if not sources:
            self._log(run, LogLevel.INFO, f"Nothing to merge for {label}")
            return None

        try:
            data = await pool.merge([item.output for item in sources])
        except MergeError as e:
            self._log(run, LogLevel.ERROR, f"Merging {label} failed: {e}")
            return None
        except Exception as e:
            logger.exception(f"Unexpected error merging {label}")
            # per-file successes stand
            self._log(run, LogLevel.ERROR, f"Merging {label} failed: {e}")
            return None

        if batch_index is not None:
            name = f"merged_batch_{batch_index + 1}.pdf"
        else:
            name = "merged_all.pdf"
        merged = MergedOutput(
            name=name,
            data=data,
            page_count=sum(item.page_count for item in sources),
            sources=tuple(item.name for item in sources),
            batch_index=batch_index,
        )
        run._merged.append(merged)
        for item in sources:
            # the merged document now holds these pages
            item.output = None

        self._log(run, LogLevel.SUCCESS, f"Merged {len(sources)} files for {label} ({merged.page_count} pages)")
        self._notify(self.callbacks.on_merged, merged)
        if self.config.auto_print:
            await self._print(data, name)
        return merged

    async def _print(self, data: bytes, name: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            accepted = await loop.run_in_executor(None, self.printer, data, name)
        except Exception:
            logger.exception(f"Printer failed for {name}")
            accepted = False
        if self._run is not None and not accepted:
            self._log(self._run, LogLevel.WARNING, f"Auto-print of {name} failed")

    # Reporting

    def _set_state(self, run: BatchRun, state: RunState) -> None:
        run.state = state
        self._notify(self.callbacks.on_state_change, state)

    def _log(self, run: BatchRun, level: LogLevel, message: str) -> None:
        event = LogEvent(level=level, message=message)
        run._events.append(event)
        logger.log(_PY_LEVELS[level], message)
        self._notify(self.callbacks.on_log, event)

    @staticmethod
    def _notify(callback: Optional[Callable], *args) -> None:
        """Call a hook; a failing hook is logged and does not stop the run."""
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Callback %s failed", getattr(callback, "__name__", callback))


def convert_files(
    files: Iterable[FileHandle],
    config: Optional[ConversionConfig] = None,
    callbacks: Optional[RunCallbacks] = None,
) -> BatchRun:
    """Run the pipeline to completion from synchronous code."""
    return asyncio.run(BatchOrchestrator(config, callbacks).run(files))
