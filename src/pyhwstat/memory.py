"""Memory, mount capacity and disk I/O sampling engine for pyhwstat."""

import logging
import re
import time
from collections.abc import Callable

import psutil

from pyhwstat.bootstrap import Environment
from pyhwstat.config import EngineConfig
from pyhwstat.errors import CollectError
from pyhwstat.models import DiskSnapshot, MemoryAmount, MemorySnapshot, MountRecord
from pyhwstat.units import clamp, percent, round_half_up

logger = logging.getLogger(__name__)

SECTOR_SIZE = 512
MIN_ELAPSED = 0.01
SWAP = "swap"

# field positions in /sys/block/<dev>/stat
SECTORS_READ_FIELD = 2
SECTORS_WRITTEN_FIELD = 6
IO_TICKS_FIELD = 9

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


def unescape_mount_field(value: str) -> str:
    """Decode the octal escapes (``\\040`` for space) used by the mount table."""
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), value)


def parse_meminfo(text: str) -> dict[str, int]:
    """Return meminfo counters in bytes, keyed by their label without ':'."""
    stats: dict[str, int] = {}
    for line in text.splitlines():
        label, sep, rest = line.partition(":")
        if not sep:
            continue
        fields = rest.split()
        if not fields:
            continue
        try:
            value = int(fields[0])
        except ValueError:
            continue
        stats[label.strip()] = value << 10 if fields[1:2] == ["kB"] else value
    return stats


def parse_filesystems(text: str, excluded: frozenset[str]) -> set[str]:
    """Real filesystem types: the first token of each line, minus ``excluded``."""
    fstypes: set[str] = set()
    for line in text.splitlines():
        fields = line.split()
        if fields and fields[0] not in excluded:
            fstypes.add(fields[0])
    return fstypes


def parse_io_stat(text: str) -> tuple[int, int, int]:
    """Sectors read, sectors written and busy milliseconds from a block stat file."""
    fields = text.split()
    return (
        int(fields[SECTORS_READ_FIELD]),
        int(fields[SECTORS_WRITTEN_FIELD]),
        int(fields[IO_TICKS_FIELD]),
    )


class MemoryEngine:
    """
    Converts /proc/meminfo and block device counters into a MemorySnapshot.

    Tracks mounted real filesystems across ticks to compute I/O rates. One
    instance per sampling stream; ``collect()`` must not be called
    concurrently.
    """

    def __init__(
        self,
        env: Environment,
        config: EngineConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """
        Initialize the MemoryEngine.

        Args:
            env: Resolved environment.
            config: Engine configuration.
            clock: Returns seconds on a monotonic scale. Defaults to system uptime.
        """
        self._env = env
        self._fs = env.fs
        self._config = config or EngineConfig()
        self._clock = clock or self.system_uptime
        self._disks: dict[str, MountRecord] = {}
        self._ignored: set[str] = set()
        self._last_found: list[str] = []
        self._old_uptime = self._clock()

    @property
    def ignored_mounts(self) -> set[str]:
        return set(self._ignored)

    @property
    def tracked_mounts(self) -> list[str]:
        return list(self._disks)

    def system_uptime(self) -> float:
        """Seconds since boot, from /proc/uptime or psutil as a fallback."""
        try:
            return float(self._fs.read_text(self._env.proc("uptime")).split()[0])
        except (OSError, ValueError, IndexError):
            return time.time() - psutil.boot_time()

    def collect(self) -> MemorySnapshot:
        """
        Sample memory, swap and disks for one tick.

        Raises:
            CollectError: A mandatory source (meminfo, filesystems, mount
                table) is missing or malformed.
        """
        stats = self._read_meminfo()
        fstypes = self._read_filesystems()
        mount_lines = self._read_mount_table()

        total = stats["MemTotal"]
        free = stats.get("MemFree", 0)
        cached = stats.get("Cached", 0)
        available = stats.get("MemAvailable", free + cached)
        used = total - (available if available <= total else free)

        swap_total = stats.get("SwapTotal", 0)
        swap_free = stats.get("SwapFree", 0)
        has_swap = swap_total > 0

        self._update_mounts(fstypes, mount_lines, has_swap)
        self._update_capacity()

        swap_fields: dict[str, MemoryAmount] = {}
        if has_swap:
            swap_used = swap_total - swap_free
            swap_fields = {
                "swap_total": MemoryAmount(swap_total, 100),
                "swap_used": MemoryAmount(swap_used, clamp(percent(swap_used, swap_total))),
                "swap_free": MemoryAmount(swap_free, clamp(percent(swap_free, swap_total))),
            }
            self._update_swap(swap_total, swap_used, swap_free)

        self._update_io()

        return MemorySnapshot(
            total=MemoryAmount(total, 100),
            available=MemoryAmount(available, clamp(percent(available, total))),
            cached=MemoryAmount(cached, clamp(percent(cached, total))),
            free=MemoryAmount(free, clamp(percent(free, total))),
            used=MemoryAmount(used, clamp(percent(used, total))),
            disks=[DiskSnapshot.from_record(self._disks[m]) for m in self._disk_order(has_swap)],
            **swap_fields,
        )

    def _read_meminfo(self) -> dict[str, int]:
        path = self._env.proc("meminfo")
        try:
            stats = parse_meminfo(self._fs.read_text(path))
        except OSError as e:
            raise CollectError(path, f"failed to read: {e}") from e
        if stats.get("MemTotal", 0) <= 0:
            raise CollectError(path, "could not get total memory size")
        return stats

    def _read_filesystems(self) -> set[str]:
        path = self._env.proc("filesystems")
        try:
            text = self._fs.read_text(path)
        except OSError as e:
            raise CollectError(path, f"failed to read: {e}") from e
        return parse_filesystems(text, self._config.excluded_fs_types)

    def _read_mount_table(self) -> list[tuple[str, str, str]]:
        path = "/etc/mtab" if self._fs.exists("/etc/mtab") else self._env.proc("self/mounts")
        try:
            text = self._fs.read_text(path)
        except OSError as e:
            raise CollectError(path, f"failed to get mounts: {e}") from e

        mounts = []
        for line in text.splitlines():
            fields = line.split()
            if len(fields) < 3:
                continue
            mounts.append((unescape_mount_field(fields[0]), unescape_mount_field(fields[1]), fields[2]))
        return mounts

    def _update_mounts(
        self, fstypes: set[str], mount_lines: list[tuple[str, str, str]], has_swap: bool
    ) -> None:
        found: list[str] = []

        for dev, mountpoint, fstype in mount_lines:
            if mountpoint in self._ignored or mountpoint in found:
                continue
            if mountpoint not in self._config.static_mounts and fstype not in fstypes:
                continue

            found.append(mountpoint)
            if mountpoint not in self._disks:
                self._disks[mountpoint] = self._new_record(dev, mountpoint, fstype)
                logger.debug("Tracking mount %s (%s)", mountpoint, fstype)

        live = set(found)
        if has_swap:
            live.add(SWAP)
        for mountpoint in [m for m in self._disks if m not in live]:
            logger.debug("Mount %s disappeared", mountpoint)
            del self._disks[mountpoint]

        self._last_found = found

    def _new_record(self, dev: str, mountpoint: str, fstype: str) -> MountRecord:
        device = self._fs.canonical(dev) or dev
        name = mountpoint.rsplit("/", 1)[-1]
        if not name:
            name = "root" if mountpoint == "/" else mountpoint

        return MountRecord(
            mountpoint=mountpoint,
            device=device,
            name=name,
            fstype=fstype,
            stat_path=self.find_stat_path(device),
        )

    def find_stat_path(self, device: str) -> str | None:
        """
        Locate the /sys/block stat file for a device.

        Shorter prefixes of the device name are tried so a partition such as
        'sda1' resolves to 'sda'. If the partition has its own directory
        nested under the whole disk, that stat file is preferred.
        """
        full_name = device.rsplit("/", 1)[-1]
        devname = full_name

        while len(devname) >= 2:
            stat = f"/sys/block/{devname}/stat"
            if self._fs.exists(stat) and self._fs.readable(stat):
                nested = f"/sys/block/{devname}/{full_name}/stat"
                if devname != full_name and self._fs.exists(nested):
                    return nested
                return stat
            devname = devname[:-1]

        return None

    def _update_capacity(self) -> None:
        for mountpoint, disk in list(self._disks.items()):
            if mountpoint == SWAP or not self._fs.exists(mountpoint):
                continue
            try:
                usage = psutil.disk_usage(str(self._fs.path(mountpoint)))
            except OSError as e:
                logger.warning("Failed to get disk/partition stats for %s: %s. Ignoring...", mountpoint, e)
                self._ignored.add(mountpoint)
                del self._disks[mountpoint]
                continue

            disk.total = usage.total
            disk.free = usage.free
            disk.used = usage.total - usage.free
            disk.used_percent = percent(disk.used, disk.total)
            disk.free_percent = 100 - disk.used_percent

    def _update_swap(self, swap_total: int, swap_used: int, swap_free: int) -> None:
        disk = self._disks.get(SWAP)
        if disk is None:
            disk = self._disks[SWAP] = MountRecord(mountpoint=SWAP, device="", name=SWAP, fstype=SWAP)

        disk.total = swap_total
        disk.used = swap_used
        disk.free = swap_free
        disk.used_percent = clamp(percent(swap_used, swap_total))
        disk.free_percent = clamp(percent(swap_free, swap_total))

    def _update_io(self) -> None:
        uptime = self._clock()
        elapsed = max(MIN_ELAPSED, uptime - self._old_uptime)

        for mountpoint, disk in self._disks.items():
            if disk.stat_path is None:
                continue
            try:
                counters = parse_io_stat(self._fs.read_text(disk.stat_path))
            except (OSError, ValueError, IndexError) as e:
                logger.debug("Failed to read I/O stats of %s: %s", mountpoint, e)
                disk.io_read = disk.io_write = disk.io_activity = 0
                continue

            old = disk.old_io
            disk.old_io = counters
            if old is None:
                disk.io_read = disk.io_write = disk.io_activity = 0
                continue

            disk.io_read = max(0, counters[0] - old[0]) * SECTOR_SIZE
            disk.io_write = max(0, counters[1] - old[1]) * SECTOR_SIZE
            ticks = max(0, counters[2] - old[2])
            disk.io_activity = clamp(round_half_up(ticks / elapsed / 10))

        self._old_uptime = uptime

    def _disk_order(self, has_swap: bool) -> list[str]:
        order = []
        if "/" in self._disks:
            order.append("/")
        if has_swap and SWAP in self._disks:
            order.append(SWAP)
        order.extend(m for m in self._last_found if m not in ("/", SWAP) and m in self._disks)
        return order
