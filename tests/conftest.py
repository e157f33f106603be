"""Shared fixtures: fabricated /proc and /sys trees."""

import os
from pathlib import Path

import pytest

from pyhwstat.bootstrap import Environment
from pyhwstat.hostfs import HostFS

STAT = """\
cpu  100 0 50 850 0 0 0 0 0 0
cpu0 50 0 25 425 0 0 0 0 0 0
cpu1 50 0 25 425 0 0 0 0 0 0
intr 12345
ctxt 6789
"""

CPUINFO = """\
processor\t: 0
model name\t: Intel(R) Core(TM) i7-8550U CPU @ 1.80GHz
cpu MHz\t\t: 2400.000
core id\t\t: 0

processor\t: 1
model name\t: Intel(R) Core(TM) i7-8550U CPU @ 1.80GHz
cpu MHz\t\t: 2400.000
core id\t\t: 1
"""

MEMINFO = """\
MemTotal:        8000000 kB
MemFree:         2000000 kB
Buffers:          100000 kB
Cached:          1000000 kB
SwapTotal:             0 kB
SwapFree:              0 kB
Dirty:                 0 kB
"""

FILESYSTEMS = """\
nodev\tsysfs
nodev\tproc
nodev\ttmpfs
\text4
\tvfat
\tsquashfs
"""

MOUNTS = """\
sysfs /sys sysfs rw,nosuid 0 0
proc /proc proc rw 0 0
/dev/sda1 / ext4 rw,relatime 0 0
tmpfs /run tmpfs rw 0 0
"""


class FakeRoot:
    """A directory standing in for '/' on a Linux host."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def write(self, path: str, content: str) -> Path:
        target = self.root / path.lstrip("/")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        return target

    def mkdir(self, path: str) -> Path:
        target = self.root / path.lstrip("/")
        target.mkdir(parents=True, exist_ok=True)
        return target

    def remove(self, path: str) -> None:
        (self.root / path.lstrip("/")).unlink()

    def symlink(self, path: str, target: str) -> None:
        link = self.root / path.lstrip("/")
        link.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(target, link)

    @property
    def fs(self) -> HostFS:
        return HostFS(self.root)

    def env(self, core_count: int = 2) -> Environment:
        return Environment.detect(self.fs, core_count=core_count)


class FakeClock:
    """Callable clock advanced manually by tests."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def fake_root(tmp_path: Path) -> FakeRoot:
    """A minimal two-core host without sensors."""
    root = FakeRoot(tmp_path)
    root.write("/proc/stat", STAT)
    root.write("/proc/loadavg", "0.52 0.58 0.59 1/467 12345\n")
    root.write("/proc/cpuinfo", CPUINFO)
    root.write("/proc/meminfo", MEMINFO)
    root.write("/proc/filesystems", FILESYSTEMS)
    root.write("/proc/self/mounts", MOUNTS)
    root.write("/proc/uptime", "1000.00 3000.00\n")
    root.write("/dev/sda1", "")
    return root


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
