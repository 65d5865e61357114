"""
Concurrency Driver.

Runs the :class:`FileProcessor` over a list of files.

- :class:`SerialProcessor` handles files one after another and stops at the
  first failure.
- :class:`ParallelProcessor` runs a fixed pool of worker threads, each owning
  its own ``FileProcessor``. At most ``workers`` tasks are in flight at any
  time. Every file is dispatched and finishes before results are collected;
  results come back in submission order.

Error policy: the failure of the earliest file in submission order is raised,
whatever the timing of the workers. Any other failures are logged and dropped.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from rich.markup import escape

from py_instrument.config import TraceConfig, TracePattern
from py_instrument.core.result import FileResult
from py_instrument.core.rewriter import FileProcessor, InstrumenterFactory
from py_instrument.utils.console import log_warning

logger = logging.getLogger(__name__)


class Processor(Protocol):
  """Processes a batch of files."""

  def process(self, file_names: Sequence[str], config: TraceConfig) -> List[FileResult]: ...


@dataclass
class ProcessorTask:
  """
  One file submitted to the parallel driver.

  Attributes:
      file_name: The file to process.
      config: The run's settings.
      future: Completion handle holding the FileResult or the error.
  """

  file_name: str
  config: TraceConfig
  future: Optional["Future[FileResult]"] = field(default=None, repr=False)


class SerialProcessor:
  """
  Processes files in order with a single FileProcessor.
  """

  def __init__(
    self, pattern: Optional[TracePattern] = None, instrumenter_factory: Optional[InstrumenterFactory] = None
  ) -> None:
    self.file_processor = FileProcessor(pattern, instrumenter_factory)

  def process(self, file_names: Sequence[str], config: TraceConfig) -> List[FileResult]:
    """
    Args:
        file_names: Files to process.
        config: Per-invocation settings.

    Returns:
        List[FileResult]: One result per file, in order.

    Raises:
        InstrumentError: The first failure; later files are not processed.
    """
    return [self.file_processor.process(name, config) for name in file_names]


class ParallelProcessor:
  """
  Processes files on a fixed pool of worker threads.

  Attributes:
      workers: Pool size and in-flight bound.
  """

  def __init__(
    self,
    workers: int,
    pattern: Optional[TracePattern] = None,
    instrumenter_factory: Optional[InstrumenterFactory] = None,
  ) -> None:
    if workers < 1:
      raise ValueError(f"workers must be >= 1, got {workers}")
    self.workers = workers
    self.pattern = pattern
    self.instrumenter_factory = instrumenter_factory
    self._local = threading.local()

  def _init_worker(self) -> None:
    self._local.file_processor = FileProcessor(self.pattern, self.instrumenter_factory)

  def _run(self, task: ProcessorTask) -> FileResult:
    return self._local.file_processor.process(task.file_name, task.config)

  def process(self, file_names: Sequence[str], config: TraceConfig) -> List[FileResult]:
    """
    Args:
        file_names: Files to process.
        config: Per-invocation settings.

    Returns:
        List[FileResult]: One result per file, in submission order.

    Raises:
        InstrumentError: The failure of the earliest failing file in
            submission order, raised after every dispatched task finished.
    """
    tasks = [ProcessorTask(file_name=name, config=config) for name in file_names]
    slots = threading.BoundedSemaphore(self.workers)

    with ThreadPoolExecutor(max_workers=self.workers, initializer=self._init_worker) as executor:
      for task in tasks:
        slots.acquire()
        task.future = executor.submit(self._run, task)
        task.future.add_done_callback(lambda _: slots.release())

    # The executor has joined: every future is done
    results: List[FileResult] = []
    first_error: Optional[BaseException] = None
    for task in tasks:
      error = task.future.exception()
      if error is None:
        results.append(task.future.result())
      elif first_error is None:
        first_error = error
      else:
        log_warning(f"Dropped later failure: {escape(str(error))}")

    if first_error is not None:
      raise first_error
    logger.debug(f"Processed {len(results)} files on {self.workers} workers")
    return results


def new_processor(
  workers: int = 1,
  pattern: Optional[TracePattern] = None,
  instrumenter_factory: Optional[InstrumenterFactory] = None,
) -> Processor:
  """
  Picks the driver for a worker count.

  Args:
      workers: 1 for serial processing, more for a thread pool.
      pattern: Signature pattern. None means "use each run's ``config.pattern``".
      instrumenter_factory: Optional custom prologue provider.

  Returns:
      Processor: The driver.
  """
  if workers <= 1:
    return SerialProcessor(pattern, instrumenter_factory)
  return ParallelProcessor(workers, pattern, instrumenter_factory)
