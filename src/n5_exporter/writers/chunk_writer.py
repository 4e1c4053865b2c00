"""Bounded-concurrency chunk writes with progress reporting.
"""
import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, Optional, Sequence, Tuple, Union

import dask.array as da
import numpy as np
from tqdm import tqdm

from n5_exporter.util.chunk_utils import count_chunks, gen_chunk_slices
from n5_exporter.writers.containers import Container

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.INFO)

ProgressSink = Callable[[float], None]

MIN_THREADS = 1
MAX_THREADS = 256
# seconds between progress reports, about three per second
PROGRESS_POLL_INTERVAL = 0.333


class ChunkWriteError(Exception):
    pass


class WriteProgress:
    """Completed and total chunk counts for one dataset write."""

    def __init__(self, total: int):
        self.total = total
        self._completed = 0
        self._lock = threading.Lock()

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    def increment(self) -> None:
        with self._lock:
            self._completed += 1

    @property
    def done(self) -> bool:
        return self.completed >= self.total

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return min(1.0, self.completed / self.total)


class ProgressMonitor(threading.Thread):
    """
    Polls a WriteProgress and forwards completed/total to a sink until
    stopped, then reports 1.0.
    """

    def __init__(
        self,
        progress: WriteProgress,
        sink: ProgressSink,
        interval: float = PROGRESS_POLL_INTERVAL,
    ):
        super().__init__(daemon=True)
        self._progress = progress
        self._sink = sink
        self._interval = interval
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        reported_done = False
        try:
            while not self._stop_event.wait(self._interval):
                if not reported_done:
                    reported_done = self._progress.done
                    self._sink(self._progress.fraction)
        finally:
            self._sink(1.0)


class TqdmProgressSink:
    """Shows write progress as a tqdm bar, in percent."""

    def __init__(self, desc: Optional[str] = None, disable: bool = False):
        self._pbar = tqdm(total=100, desc=desc, unit="%", disable=disable)

    def __call__(self, fraction: float) -> None:
        n = int(round(fraction * 100))
        if n > self._pbar.n:
            self._pbar.update(n - self._pbar.n)
        if fraction >= 1.0:
            self._pbar.close()


class ConcurrentChunkWriter:
    """
    Writes an array into a container dataset one chunk per task, on a pool
    of exactly n_threads worker threads.
    """

    def __init__(
        self,
        n_threads: int = 1,
        progress_sink: Optional[ProgressSink] = None,
        display_progress_bar: bool = False,
        poll_interval: float = PROGRESS_POLL_INTERVAL,
    ):
        """
        Args:
            n_threads: worker pool size, between 1 and 256
            progress_sink: receives the completed fraction of each write.
                If None, a tqdm bar is created per write.
            display_progress_bar: whether the default tqdm bar is shown
            poll_interval: seconds between progress reports
        """
        if not MIN_THREADS <= n_threads <= MAX_THREADS:
            raise ValueError(
                f"n_threads must be between {MIN_THREADS} and "
                f"{MAX_THREADS}, got {n_threads}"
            )
        self.n_threads = n_threads
        self.progress_sink = progress_sink
        self.display_progress_bar = display_progress_bar
        self.poll_interval = poll_interval

    def _sink_for(self, path: str) -> ProgressSink:
        if self.progress_sink is not None:
            return self.progress_sink
        return TqdmProgressSink(
            desc=path, disable=not self.display_progress_bar
        )

    @staticmethod
    def _read(data, sl: Tuple[slice, ...]) -> np.ndarray:
        block = data[sl]
        if isinstance(block, da.Array):
            # the pool already provides the parallelism
            return block.compute(scheduler="synchronous")
        return np.asarray(block)

    def write(
        self,
        container: Container,
        path: str,
        data: Union[np.ndarray, da.Array],
        offset: Optional[Sequence[int]] = None,
    ) -> int:
        """
        Write `data` into an existing dataset.

        The chunk grid is the dataset's committed block size. Each task
        writes the part of `data` falling in one block, so sibling tasks
        never touch the same block.

        Args:
            container: the open container
            path: the dataset path
            data: row-major pixel data
            offset: where data starts in the dataset, fastest-varying
                axis first. Defaults to the origin.

        Returns:
            the number of chunks written

        Raises:
            ChunkWriteError: if any chunk write fails
        """
        attributes = container.get_dataset_attributes(path)
        block_shape = attributes.chunks()
        if offset is None:
            offset = (0,) * data.ndim
        offset = tuple(reversed(tuple(offset)))

        progress = WriteProgress(count_chunks(data.shape, block_shape, offset))
        LOGGER.info(
            f"Writing {progress.total} chunks to {path} "
            f"with {self.n_threads} thread(s)"
        )

        def _write_chunk(dst, src):
            container.write_block(path, dst, self._read(data, src))
            progress.increment()

        monitor = ProgressMonitor(
            progress, self._sink_for(path), self.poll_interval
        )
        executor = ThreadPoolExecutor(
            max_workers=self.n_threads, thread_name_prefix="chunk-writer"
        )
        monitor.start()
        try:
            futures = [
                executor.submit(_write_chunk, dst, src)
                for dst, src in gen_chunk_slices(
                    data.shape, block_shape, offset
                )
            ]
            done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    cancelled = sum(f.cancel() for f in not_done)
                    LOGGER.error(
                        f"Chunk write to {path} failed, cancelled "
                        f"{cancelled} pending chunk(s)"
                    )
                    raise ChunkWriteError(
                        f"Failed to write a chunk of {path}: {error}"
                    ) from error
        finally:
            executor.shutdown(wait=True)
            monitor.stop()
            monitor.join()

        return progress.completed
