"""Data models for pyhwstat."""

from dataclasses import dataclass, field

from pyhwstat.units import to_gigabytes, to_kilobytes, to_megabytes

CPU_FIELDS = (
    "user",
    "nice",
    "system",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)


@dataclass(slots=True, frozen=True)
class SystemUsageSnapshot:
    """Aggregate CPU usage for the most recent tick, all values 0 - 100."""

    total: int = 0
    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0
    guest: int = 0
    guest_nice: int = 0


@dataclass(slots=True, frozen=True)
class CoreUsageSnapshot:
    """Usage of one logical core for the most recent tick."""

    index: int
    percent: int  # 0 - 100
    online: bool = True


@dataclass(slots=True, frozen=True)
class LoadAverage:
    one_min: float = 0.0
    five_min: float = 0.0
    fifteen_min: float = 0.0


@dataclass(slots=True, frozen=True)
class CpuFrequency:
    value: float = 0.0
    units: str = ""  # 'GHz', 'MHz' or '' when unknown


@dataclass(slots=True, frozen=True)
class CpuSnapshot:
    """Immutable result of one CPU engine tick."""

    usage: SystemUsageSnapshot
    cores: list[CoreUsageSnapshot]
    temperature: int  # Celsius, 0 when no sensor
    critical_temperature: int
    core_temperatures: list[int]  # one slot per core, 0 when unmapped
    load_avg: LoadAverage
    frequency: CpuFrequency
    name: str
    core_count: int
    core_count_changed: bool = False
    low_confidence_sensor: bool = False


@dataclass(slots=True)
class SensorRecord:
    """A temperature sensor, refreshed in place by the sensor registry."""

    path: str
    label: str
    temp: int = 0
    high: int = 80
    crit: int = 95


@dataclass(slots=True, frozen=True)
class MemoryAmount:
    """A byte amount together with its share of the relevant total."""

    bytes: int
    percent: int = 0

    @property
    def kilobytes(self) -> float:
        return to_kilobytes(self.bytes)

    @property
    def megabytes(self) -> float:
        return to_megabytes(self.bytes)

    @property
    def gigabytes(self) -> float:
        return to_gigabytes(self.bytes)


@dataclass(slots=True)
class MountRecord:
    """
    Tracking state for one mountpoint.

    Created when the mountpoint is first seen as eligible and dropped when it
    disappears from the mount table. ``old_io`` is None until the first I/O
    sample primes it.
    """

    mountpoint: str
    device: str
    name: str
    fstype: str
    stat_path: str | None = None
    old_io: tuple[int, int, int] | None = None
    total: int = 0
    used: int = 0
    free: int = 0
    used_percent: int = 0
    free_percent: int = 0
    io_read: int = 0
    io_write: int = 0
    io_activity: int = 0


@dataclass(slots=True, frozen=True)
class DiskSnapshot:
    """Capacity and I/O figures of a mount at the most recent tick."""

    mountpoint: str
    name: str
    device: str
    fstype: str
    total: int
    used: int
    free: int
    used_percent: int
    free_percent: int
    io_read: int  # bytes read since previous tick
    io_write: int  # bytes written since previous tick
    io_activity: int  # percent of time busy, 0 - 100

    @property
    def total_gigabytes(self) -> float:
        return to_gigabytes(self.total)

    @property
    def used_gigabytes(self) -> float:
        return to_gigabytes(self.used)

    @property
    def free_gigabytes(self) -> float:
        return to_gigabytes(self.free)

    @classmethod
    def from_record(cls, record: MountRecord) -> "DiskSnapshot":
        return cls(
            mountpoint=record.mountpoint,
            name=record.name,
            device=record.device,
            fstype=record.fstype,
            total=record.total,
            used=record.used,
            free=record.free,
            used_percent=record.used_percent,
            free_percent=record.free_percent,
            io_read=record.io_read,
            io_write=record.io_write,
            io_activity=record.io_activity,
        )


@dataclass(slots=True, frozen=True)
class MemorySnapshot:
    """Immutable result of one memory engine tick."""

    total: MemoryAmount
    available: MemoryAmount
    cached: MemoryAmount
    free: MemoryAmount
    used: MemoryAmount
    swap_total: MemoryAmount | None = None
    swap_used: MemoryAmount | None = None
    swap_free: MemoryAmount | None = None
    disks: list[DiskSnapshot] = field(default_factory=list)

    @property
    def has_swap(self) -> bool:
        return self.swap_total is not None
