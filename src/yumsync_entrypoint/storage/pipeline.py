#!/usr/bin/env python3

"""
Byte pipelines between ``tar`` and a file, with progress reporting.

A producer task reads chunks from one end and puts them on a bounded queue,
a consumer task drains the queue into the other end and counts the bytes it
has written, and a sampling task periodically publishes that count to a
rich progress bar on stderr. ``None`` on the queue marks end of stream.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from rich.console import Console
from rich.progress import (
    BarColumn, DownloadColumn, Progress, TextColumn,
    TimeRemainingColumn, TransferSpeedColumn,
)

from ..errors import PipelineError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
QUEUE_DEPTH = 16
SAMPLE_INTERVAL = 0.5


class ByteCounter:
    """Bytes written by the consumer, read by the sampler"""

    def __init__(self):
        self.value = 0

    def add(self, count: int) -> None:
        self.value += count


Chunk = Optional[bytes]
Producer = Callable[[asyncio.Queue], Awaitable[None]]
Consumer = Callable[[asyncio.Queue, ByteCounter], Awaitable[None]]


def stream_producer(stream: asyncio.StreamReader) -> Producer:
    async def produce(queue: asyncio.Queue) -> None:
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                break
            await queue.put(chunk)
        await queue.put(None)
    return produce


def file_producer(path: str) -> Producer:
    async def produce(queue: asyncio.Queue) -> None:
        with open(path, 'rb') as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                await queue.put(chunk)
        await queue.put(None)
    return produce


def file_consumer(path: str) -> Consumer:
    async def consume(queue: asyncio.Queue, counter: ByteCounter) -> None:
        with open(path, 'xb') as f:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break
                f.write(chunk)
                counter.add(len(chunk))
    return consume


def stream_consumer(writer: asyncio.StreamWriter) -> Consumer:
    async def consume(queue: asyncio.Queue, counter: ByteCounter) -> None:
        try:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break
                writer.write(chunk)
                await writer.drain()
                counter.add(len(chunk))
        finally:
            writer.close()
    return consume


async def _sample(counter: ByteCounter, progress: Optional[Progress], task_id, interval: float) -> None:
    while True:
        if progress is not None:
            progress.update(task_id, completed=counter.value)
        await asyncio.sleep(interval)


def _make_progress() -> Progress:
    return Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=Console(stderr=True),
    )


async def run_pipeline(produce: Producer, consume: Consumer, total: int,
                       description: str, show_progress: bool = True,
                       interval: float = SAMPLE_INTERVAL) -> int:
    """Move bytes from produce to consume, returning the number of bytes written"""
    queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_DEPTH)
    counter = ByteCounter()

    progress = _make_progress() if show_progress else None
    task_id = progress.add_task(description, total=total or None) if progress else None

    if progress is not None:
        progress.start()
    sampler = asyncio.ensure_future(_sample(counter, progress, task_id, interval))
    try:
        await asyncio.gather(produce(queue), consume(queue, counter))
    finally:
        sampler.cancel()
        try:
            await sampler
        except asyncio.CancelledError:
            pass
        if progress is not None:
            progress.update(task_id, completed=counter.value)
            progress.stop()

    return counter.value


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


async def tar_to_file(tar_args: List[str], destination: str, total: int,
                      description: str, show_progress: bool = True) -> int:
    """Run tar writing to stdout and stream its output into destination"""
    logger.debug(f"Running: tar {' '.join(tar_args)} > {destination}")
    proc = await asyncio.create_subprocess_exec(
        "tar", *tar_args,
        stdout=asyncio.subprocess.PIPE,
    )
    try:
        written = await run_pipeline(
            stream_producer(proc.stdout), file_consumer(destination),
            total, description, show_progress,
        )
    except BaseException:
        # nobody drains stdout any more, so tar would block forever
        await _terminate(proc)
        raise
    returncode = await proc.wait()

    if returncode != 0:
        raise PipelineError(f"tar exited with status {returncode}")
    return written


async def file_to_tar(source: str, tar_args: List[str], total: int,
                      description: str, show_progress: bool = True) -> int:
    """Stream source into the stdin of tar"""
    logger.debug(f"Running: tar {' '.join(tar_args)} < {source}")
    proc = await asyncio.create_subprocess_exec(
        "tar", *tar_args,
        stdin=asyncio.subprocess.PIPE,
    )
    try:
        written = await run_pipeline(
            file_producer(source), stream_consumer(proc.stdin),
            total, description, show_progress,
        )
    except (BrokenPipeError, ConnectionResetError):
        # tar stopped reading early; its exit status explains why
        written = None
    except BaseException:
        await _terminate(proc)
        raise
    returncode = await proc.wait()

    if returncode != 0:
        raise PipelineError(f"tar exited with status {returncode}")
    if written is None:
        raise PipelineError("tar closed its input before the archive was fully read")
    return written
