"""Background sampling loop for pyhwstat."""

import logging
import threading
import time
from dataclasses import dataclass
from queue import Queue

from pyhwstat.bootstrap import Environment
from pyhwstat.cpu import CpuEngine
from pyhwstat.errors import CollectError
from pyhwstat.memory import MemoryEngine
from pyhwstat.models import CpuSnapshot, MemorySnapshot

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Sample:
    """One tick of both engines. A snapshot is None if its engine failed."""

    timestamp: float
    cpu: CpuSnapshot | None
    memory: MemorySnapshot | None


class Sampler:
    """
    Drives a CpuEngine and a MemoryEngine from a daemon thread.

    Each tick's Sample is pushed to a thread-safe Queue. The engines are only
    touched from the sampler thread, which keeps their ticks sequential.
    """

    def __init__(
        self,
        update_queue: Queue[Sample],
        poll_rate: float = 2.0,
        cpu_engine: CpuEngine | None = None,
        memory_engine: MemoryEngine | None = None,
        env: Environment | None = None,
    ) -> None:
        """
        Initialize the Sampler.

        Args:
            update_queue: Thread-safe queue to push samples to.
            poll_rate: How often to sample (in seconds). Default 2.0s.
            cpu_engine: CPU engine to drive. Built from ``env`` if omitted.
            memory_engine: Memory engine to drive. Built from ``env`` if omitted.
            env: Environment used to build missing engines.
        """
        if cpu_engine is None or memory_engine is None:
            env = env or Environment.detect()
        self._queue = update_queue
        self._poll_rate = max(0.1, poll_rate)
        self._cpu = cpu_engine or CpuEngine(env)
        self._memory = memory_engine or MemoryEngine(env)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the sampler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sampling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="Sampler",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the sampling thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.collect_once())
            except Exception:
                logger.exception("Sampling tick failed")

            self._stop_event.wait(timeout=self._poll_rate)

    def collect_once(self) -> Sample:
        """Run one tick of both engines; a CollectError only blanks its own snapshot."""
        cpu: CpuSnapshot | None = None
        memory: MemorySnapshot | None = None

        try:
            cpu = self._cpu.collect()
        except CollectError as e:
            logger.warning("CPU sample skipped: %s", e)

        try:
            memory = self._memory.collect()
        except CollectError as e:
            logger.warning("Memory sample skipped: %s", e)

        return Sample(timestamp=time.time(), cpu=cpu, memory=memory)
