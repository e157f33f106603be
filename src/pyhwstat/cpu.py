"""CPU sampling engine for pyhwstat."""

import logging
from dataclasses import dataclass, field

from pyhwstat.bootstrap import Environment
from pyhwstat.config import EngineConfig
from pyhwstat.cpuname import derive_cpu_name
from pyhwstat.errors import CollectError
from pyhwstat.models import (
    CPU_FIELDS,
    CoreUsageSnapshot,
    CpuFrequency,
    CpuSnapshot,
    LoadAverage,
    SystemUsageSnapshot,
)
from pyhwstat.sensors import SensorRegistry
from pyhwstat.units import clamp, round_half_up

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SampleCounters:
    """Cumulative totals seen at the previous tick."""

    totals: int = 0
    idles: int = 0
    fields: dict[str, int] = field(default_factory=lambda: dict.fromkeys(CPU_FIELDS, 0))
    core_totals: list[int] = field(default_factory=list)
    core_idles: list[int] = field(default_factory=list)

    def grow(self, core_count: int) -> None:
        missing = core_count - len(self.core_totals)
        if missing > 0:
            self.core_totals.extend([0] * missing)
            self.core_idles.extend([0] * missing)


@dataclass(slots=True, frozen=True)
class StatLine:
    """One parsed ``cpu`` row of /proc/stat."""

    times: tuple[int, ...]

    @property
    def totals(self) -> int:
        # guest and guest_nice are already accounted in user and nice
        return max(0, sum(self.times) - sum(self.times[8:]))

    @property
    def idles(self) -> int:
        return max(0, self.times[3] + (self.times[4] if len(self.times) > 4 else 0))


def busy_percent(totals: int, idles: int, old_totals: int, old_idles: int) -> int:
    """Share of non-idle time between two cumulative samples, 0 - 100."""
    calc_totals = max(1, totals - old_totals)
    calc_idles = max(0, idles - old_idles)
    return clamp(round_half_up((calc_totals - calc_idles) * 100 / calc_totals))


def parse_stat(text: str) -> tuple[StatLine, dict[int, StatLine]]:
    """
    Parse the aggregate row and per-core rows of /proc/stat.

    Raises:
        ValueError: The aggregate row is missing or any cpu row is malformed.
    """
    aggregate: StatLine | None = None
    cores: dict[int, StatLine] = {}

    for line in text.splitlines():
        if not line.startswith("cpu"):
            continue
        parts = line.split()
        times = tuple(int(v) for v in parts[1:])
        if len(times) < 4:
            raise ValueError(f"malformed row {parts[0]!r}")
        if parts[0] == "cpu":
            aggregate = StatLine(times)
        else:
            cores[int(parts[0][3:])] = StatLine(times)

    if aggregate is None:
        raise ValueError("no aggregate cpu row")
    return aggregate, cores


def format_frequency(mhz: float) -> CpuFrequency:
    if mhz >= 10000:
        return CpuFrequency(round_half_up(mhz / 1000), "GHz")
    if mhz >= 1000:
        return CpuFrequency(round_half_up(mhz / 100) / 10.0, "GHz")
    return CpuFrequency(round_half_up(mhz), "MHz")


class CpuEngine:
    """
    Turns cumulative /proc/stat counters into usage percentages.

    Also reports temperatures through a SensorRegistry, load averages,
    frequency and the CPU name. One instance per sampling stream;
    ``collect()`` must not be called concurrently.
    """

    def __init__(
        self,
        env: Environment,
        config: EngineConfig | None = None,
        sensors: SensorRegistry | None = None,
    ) -> None:
        """
        Initialize the CpuEngine.

        Args:
            env: Resolved environment.
            config: Engine configuration.
            sensors: Sensor registry. One is created and discovered if omitted.
        """
        self._env = env
        self._fs = env.fs
        self._config = config or EngineConfig()
        self._core_count = env.core_count
        self._counters = SampleCounters()
        self._counters.grow(self._core_count)

        self._freq_path = env.freq_path
        self._freq_fast_failures = 0
        self._freq_failures = 0
        self._freq_disabled = False
        self._name: str | None = None

        if sensors is None:
            sensors = SensorRegistry(self._fs, self._config, env.proc_path)
            sensors.discover()
        self._sensors = sensors
        self._sensors.map_cores(self._core_count)

    @property
    def core_count(self) -> int:
        return self._core_count

    @property
    def sensors(self) -> SensorRegistry:
        return self._sensors

    @property
    def name(self) -> str:
        if self._name is None:
            self._name = derive_cpu_name(self._fs, self._env.proc_path)
        return self._name

    def collect(self) -> CpuSnapshot:
        """
        Sample all CPU metrics for one tick.

        Raises:
            CollectError: /proc/stat is missing or malformed. No state is changed.
        """
        stat_path = self._env.proc("stat")
        try:
            aggregate, core_lines = parse_stat(self._fs.read_text(stat_path))
        except OSError as e:
            raise CollectError(stat_path, f"failed to read: {e}") from e
        except ValueError as e:
            raise CollectError(stat_path, str(e)) from e

        changed = self._grow_cores(core_lines)
        usage = self._system_usage(aggregate)
        cores = self._core_usage(core_lines)

        self._sensors.refresh()
        primary = self._sensors.primary

        return CpuSnapshot(
            usage=usage,
            cores=cores,
            temperature=primary.temp if primary else 0,
            critical_temperature=primary.crit if primary else 0,
            core_temperatures=self._sensors.core_temperatures(),
            load_avg=self.load_average(),
            frequency=self.frequency(),
            name=self.name,
            core_count=self._core_count,
            core_count_changed=changed,
            low_confidence_sensor=self._sensors.low_confidence,
        )

    def _grow_cores(self, core_lines: dict[int, StatLine]) -> bool:
        detected = max(core_lines, default=-1) + 1
        if detected <= self._core_count:
            return False

        logger.info("Core count changed from %d to %d", self._core_count, detected)
        self._core_count = detected
        self._counters.grow(detected)
        self._sensors.map_cores(detected)
        return True

    def _system_usage(self, line: StatLine) -> SystemUsageSnapshot:
        old = self._counters
        totals, idles = line.totals, line.idles
        calc_totals = max(1, totals - old.totals)

        values = {"total": busy_percent(totals, idles, old.totals, old.idles)}
        for name, value in zip(CPU_FIELDS, line.times):
            values[name] = clamp(round_half_up((value - old.fields[name]) * 100 / calc_totals))
            old.fields[name] = value

        old.totals = totals
        old.idles = idles
        return SystemUsageSnapshot(**values)

    def _core_usage(self, core_lines: dict[int, StatLine]) -> list[CoreUsageSnapshot]:
        old = self._counters
        cores: list[CoreUsageSnapshot] = []

        for i in range(self._core_count):
            line = core_lines.get(i)
            if line is None:
                # offline or missing from this tick; keep its previous counters
                cores.append(CoreUsageSnapshot(index=i, percent=0, online=False))
                continue

            totals, idles = line.totals, line.idles
            percent = busy_percent(totals, idles, old.core_totals[i], old.core_idles[i])
            old.core_totals[i] = totals
            old.core_idles[i] = idles
            cores.append(CoreUsageSnapshot(index=i, percent=percent))

        return cores

    def load_average(self) -> LoadAverage:
        """One, five and fifteen minute load averages; zeros if unreadable."""
        path = self._env.proc("loadavg")
        try:
            one, five, fifteen = (float(v) for v in self._fs.read_text(path).split()[:3])
        except (OSError, ValueError) as e:
            logger.debug("Failed to read %s: %s", path, e)
            return LoadAverage()
        return LoadAverage(one, five, fifteen)

    def _fast_frequency(self) -> float:
        if self._freq_path is None:
            return 0.0
        try:
            mhz = float(self._fs.read_or(self._freq_path, "0.0")) / 1000
        except ValueError:
            mhz = 0.0

        if mhz <= 0.0:
            self._freq_fast_failures += 1
            if self._freq_fast_failures >= self._config.freq_fast_path_failures:
                logger.debug("Disabling frequency fast path %s", self._freq_path)
                self._freq_path = None
        return mhz

    def _cpuinfo_frequency(self) -> float:
        try:
            cpuinfo = self._fs.read_text(self._env.proc("cpuinfo"))
        except OSError:
            return 0.0

        for line in cpuinfo.splitlines():
            key, sep, value = line.partition(":")
            if sep and key.strip() == "cpu MHz":
                try:
                    return float(value)
                except ValueError:
                    return 0.0
        return 0.0

    def frequency(self) -> CpuFrequency:
        """
        Current frequency of the first CPU policy, best effort.

        Returns an empty CpuFrequency once the readout has failed too often.
        """
        if self._freq_disabled:
            return CpuFrequency()

        mhz = self._fast_frequency()
        if mhz <= 0.0:
            mhz = self._cpuinfo_frequency()

        if mhz <= 1 or mhz >= 1_000_000:
            self._freq_failures += 1
            if self._freq_failures >= self._config.freq_failure_limit:
                self._freq_disabled = True
                logger.warning(
                    "Failed to read cpu frequency %d times, disabling readout",
                    self._freq_failures,
                )
            return CpuFrequency()

        self._freq_failures = 0
        return format_frequency(mhz)
