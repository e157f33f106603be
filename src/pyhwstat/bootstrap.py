"""Process-wide constants resolved once at startup."""

import logging
import os
from dataclasses import dataclass

import psutil

from pyhwstat.config import EngineConfig
from pyhwstat.errors import ProcUnavailableError
from pyhwstat.hostfs import HostFS

logger = logging.getLogger(__name__)

PROC_PATH = "/proc"
FREQ_PATH = "/sys/devices/system/cpu/cpufreq/policy0/scaling_cur_freq"
DEFAULT_PAGE_SIZE = 4096
DEFAULT_CLK_TCK = 100


def _sysconf(name: str, default: int) -> int:
    try:
        value = os.sysconf(name)
    except (ValueError, OSError):
        return default
    return value if value > 0 else default


def _detect_core_count() -> int:
    count = psutil.cpu_count(logical=True) or os.cpu_count() or 1
    return max(1, count)


@dataclass(slots=True, frozen=True)
class Environment:
    """
    Read-only OS facts consumed by every engine.

    Build it with ``Environment.detect()`` rather than directly.
    """

    fs: HostFS
    proc_path: str
    freq_path: str | None
    page_size: int
    clk_tck: int
    core_count: int

    def proc(self, name: str) -> str:
        """OS path of an entry below the process-information root."""
        return f"{self.proc_path}/{name}"

    @classmethod
    def detect(
        cls,
        fs: HostFS | None = None,
        config: EngineConfig | None = None,
        core_count: int | None = None,
    ) -> "Environment":
        """
        Resolve the environment.

        Args:
            fs: Filesystem view. Defaults to one rooted at ``config.root``.
            config: Engine configuration.
            core_count: Override for the logical core count.

        Raises:
            ProcUnavailableError: The proc filesystem is missing or unreadable.
        """
        config = config or EngineConfig()
        fs = fs or HostFS(config.root)

        if not (fs.is_dir(PROC_PATH) and fs.readable(PROC_PATH)):
            raise ProcUnavailableError(
                "Proc filesystem not found or no permission to read from it"
            )

        freq_path: str | None = FREQ_PATH
        if not (fs.is_file(FREQ_PATH) and fs.readable(FREQ_PATH)):
            freq_path = None

        env = cls(
            fs=fs,
            proc_path=PROC_PATH,
            freq_path=freq_path,
            page_size=_sysconf("SC_PAGE_SIZE", DEFAULT_PAGE_SIZE),
            clk_tck=_sysconf("SC_CLK_TCK", DEFAULT_CLK_TCK),
            core_count=max(1, core_count) if core_count else _detect_core_count(),
        )
        logger.debug(
            "Environment resolved: root=%s cores=%d freq_path=%s",
            fs.root,
            env.core_count,
            env.freq_path,
        )
        return env
