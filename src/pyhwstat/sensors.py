"""Temperature sensor discovery, selection and core mapping.

Discovery is a pure function over a ``HostFS`` so it can run against a
fabricated directory tree. ``SensorRegistry`` keeps the discovered records
and refreshes them in place on every tick.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from pyhwstat.config import EngineConfig
from pyhwstat.hostfs import HostFS
from pyhwstat.models import SensorRecord

logger = logging.getLogger(__name__)

HWMON_PATH = "/sys/class/hwmon"
CORETEMP_HWMON_PATH = "/sys/devices/platform/coretemp.0/hwmon"
THERMAL_PATH = "/sys/class/thermal"

PACKAGE_MARKERS = ("Package id", "Tdie")
CORE_MARKERS = ("Core", "Tccd")
CPU_NAME_HINTS = ("cpu", "k10temp")

DEFAULT_HIGH = 80
DEFAULT_CRIT = 95

_TEMP_INPUT = re.compile(r"^temp(\d*)_input$")
_TRAILING_NUMBER = re.compile(r"^(.*?)(\d+)$")


def millidegrees(raw: str) -> int:
    """Convert a milli-degree reading to whole degrees, truncating."""
    return int(int(raw.strip()) / 1000)


def _is_temp_input(name: str) -> bool:
    return _TEMP_INPUT.match(name) is not None


@dataclass(slots=True)
class SensorDiscovery:
    """Outcome of a discovery pass."""

    primary: str | None = None
    core_sensors: list[str] = field(default_factory=list)
    sensors: dict[str, SensorRecord] = field(default_factory=dict)
    low_confidence: bool = False


def _hwmon_search_paths(fs: HostFS) -> tuple[list[str], bool]:
    """Controller directories holding temp*_input files, and whether coretemp was seen."""
    search_paths: list[str] = []
    got_coretemp = False

    for entry in fs.list_dir(HWMON_PATH):
        add_path = fs.canonical(f"{HWMON_PATH}/{entry}")
        if add_path is None:
            continue
        if add_path in search_paths or f"{add_path}/device" in search_paths:
            continue
        if "coretemp" in add_path:
            got_coretemp = True

        for name in fs.list_dir(add_path):
            if name == "device":
                device_path = f"{add_path}/device"
                if any(_is_temp_input(n) for n in fs.list_dir(device_path)):
                    search_paths.append(device_path)
                    break
            if _is_temp_input(name):
                search_paths.append(add_path)
                break

    if not got_coretemp and fs.is_dir(CORETEMP_HWMON_PATH):
        for entry in fs.list_dir(CORETEMP_HWMON_PATH):
            add_path = fs.canonical(f"{CORETEMP_HWMON_PATH}/{entry}")
            if add_path is None or add_path in search_paths:
                continue
            if any(_is_temp_input(n) for n in fs.list_dir(add_path)):
                search_paths.append(add_path)
                got_coretemp = True

    return search_paths, got_coretemp


def _scan_controller(fs: HostFS, path: str, found: dict[str, SensorRecord]) -> None:
    controller = fs.read_or(f"{path}/name", path.rsplit("/", 1)[-1])

    for name in fs.list_dir(path):
        match = _TEMP_INPUT.match(name)
        if match is None:
            continue
        base = f"{path}/temp{match.group(1)}_"
        label = fs.read_or(base + "label", f"temp{match.group(1)}")
        try:
            record = SensorRecord(
                path=base + "input",
                label=label,
                temp=millidegrees(fs.read_or(base + "input", "0")),
                high=millidegrees(fs.read_or(base + "max", "80000")),
                crit=millidegrees(fs.read_or(base + "crit", "95000")),
            )
        except ValueError:
            logger.debug("Skipping unparsable sensor %s", base + "input")
            continue
        found[f"{controller}/{label}"] = record


def _scan_thermal_zones(fs: HostFS, found: dict[str, SensorRecord]) -> None:
    i = 0
    while fs.exists(f"{THERMAL_PATH}/thermal_zone{i}"):
        base = f"{THERMAL_PATH}/thermal_zone{i}"
        index = i
        i += 1
        if not fs.exists(f"{base}/temp"):
            continue

        label = fs.read_or(f"{base}/type", f"temp{index}")
        high = crit = 0
        trip = 0
        while fs.exists(f"{base}/trip_point_{trip}_temp"):
            trip_type = fs.read_or(f"{base}/trip_point_{trip}_type")
            if trip_type in ("high", "critical"):
                try:
                    value = millidegrees(fs.read_or(f"{base}/trip_point_{trip}_temp", "0"))
                except ValueError:
                    value = 0
                if trip_type == "high":
                    high = value
                else:
                    crit = value
            trip += 1

        try:
            temp = millidegrees(fs.read_or(f"{base}/temp", "0"))
        except ValueError:
            logger.debug("Skipping unparsable thermal zone %s", base)
            continue

        found[f"thermal{index}/{label}"] = SensorRecord(
            path=f"{base}/temp",
            label=label,
            temp=temp,
            high=high if high >= 1 else DEFAULT_HIGH,
            crit=crit if crit >= 1 else DEFAULT_CRIT,
        )


def order_core_sensors(names: list[str]) -> list[str]:
    """
    Deduplicate and order per-core sensor names by their numeric suffix.

    'coretemp/Core 10' sorts after 'coretemp/Core 2'. Names without a
    trailing number sort before numbered ones sharing the same prefix.
    """

    def key(name: str) -> tuple[str, int, str]:
        match = _TRAILING_NUMBER.match(name)
        if match is None:
            return (name, -1, name)
        return (match.group(1), int(match.group(2)), name)

    return sorted(dict.fromkeys(names), key=key)


@dataclass(slots=True, frozen=True)
class SelectionRule:
    name: str
    pick: Callable[[dict[str, SensorRecord], str], str | None]
    low_confidence: bool = False


def _pick_configured(sensors: dict[str, SensorRecord], preferred: str) -> str | None:
    if preferred != "Auto" and preferred in sensors:
        return preferred
    return None


def _pick_package(sensors: dict[str, SensorRecord], preferred: str) -> str | None:
    for name, record in sensors.items():
        if record.label.startswith(PACKAGE_MARKERS):
            return name
    return None


def _pick_cpu_hint(sensors: dict[str, SensorRecord], preferred: str) -> str | None:
    for name in sensors:
        folded = name.casefold()
        if any(hint in folded for hint in CPU_NAME_HINTS):
            return name
    return None


def _pick_any(sensors: dict[str, SensorRecord], preferred: str) -> str | None:
    return next(iter(sensors), None)


SELECTION_RULES: tuple[SelectionRule, ...] = (
    SelectionRule("configured", _pick_configured),
    SelectionRule("package", _pick_package),
    SelectionRule("cpu-hint", _pick_cpu_hint),
    SelectionRule("any", _pick_any, low_confidence=True),
)


def select_primary(
    sensors: dict[str, SensorRecord],
    preferred: str = "Auto",
    rules: tuple[SelectionRule, ...] = SELECTION_RULES,
) -> tuple[str | None, bool]:
    """Return the primary sensor name and whether the choice is low-confidence."""
    for rule in rules:
        name = rule.pick(sensors, preferred)
        if name is not None:
            return name, rule.low_confidence
    return None, False


def discover_sensors(fs: HostFS, preferred: str = "Auto") -> SensorDiscovery:
    """
    Find temperature sensors under hwmon, falling back to thermal zones.

    Thermal zones are only scanned when hwmon yielded no package-level
    sensor. The per-core list is built from hwmon labels regardless.
    """
    found: dict[str, SensorRecord] = {}
    search_paths, _ = _hwmon_search_paths(fs)
    for path in search_paths:
        _scan_controller(fs, path, found)

    has_package = any(r.label.startswith(PACKAGE_MARKERS) for r in found.values())
    if not has_package and fs.exists(THERMAL_PATH):
        _scan_thermal_zones(fs, found)

    core_sensors = order_core_sensors(
        [name for name, r in found.items() if r.label.startswith(CORE_MARKERS)]
    )
    primary, low_confidence = select_primary(found, preferred)
    if low_confidence:
        logger.warning(
            "No good candidate for cpu sensor found, using %s from all found sensors",
            primary,
        )

    return SensorDiscovery(
        primary=primary,
        core_sensors=core_sensors,
        sensors=found,
        low_confidence=low_confidence,
    )


def read_core_topology(cpuinfo: str) -> dict[int, int]:
    """Map logical cpu index to physical core id from cpuinfo text."""
    topology: dict[int, int] = {}
    processor: int | None = None

    for line in cpuinfo.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        try:
            if key == "processor":
                processor = int(value)
            elif key == "core id" and processor is not None:
                topology[processor] = int(value)
        except ValueError:
            continue

    return topology


def map_cores(
    core_count: int,
    sensor_count: int,
    topology: dict[int, int] | None = None,
    overrides: dict[int, int] | None = None,
) -> dict[int, int]:
    """
    Build the logical core -> per-core sensor index map.

    Physical core ids are used directly when they fit the sensor list,
    otherwise by their rank among the ids seen. When the topology covers
    fewer cores than ``core_count``, an exactly-half mapping on an even core
    count is mirrored onto the other half; anything else falls back to
    round-robin over all cores.
    """
    if sensor_count < 1 or core_count < 1:
        return {}

    topology = {cpu: core for cpu, core in (topology or {}).items() if 0 <= cpu < core_count}
    ids = sorted(set(topology.values()))
    if ids and ids[-1] >= sensor_count:
        rank = {core_id: i for i, core_id in enumerate(ids)}
        mapping = {cpu: rank[core] % sensor_count for cpu, core in topology.items()}
    else:
        mapping = dict(topology)

    if len(mapping) < core_count:
        half = core_count // 2
        if core_count % 2 == 0 and len(mapping) == half and all(c < half for c in mapping):
            for i in range(half):
                mapping[half + i] = mapping[i]
        else:
            mapping = {i: i % sensor_count for i in range(core_count)}

    for core, sensor in (overrides or {}).items():
        if 0 <= core < core_count and 0 <= sensor < sensor_count:
            mapping[core] = sensor

    return dict(sorted(mapping.items()))


class SensorRegistry:
    """
    Owns discovered sensors and the core-to-sensor map for one CPU engine.
    """

    def __init__(
        self,
        fs: HostFS,
        config: EngineConfig | None = None,
        proc_path: str = "/proc",
    ) -> None:
        self._fs = fs
        self._config = config or EngineConfig()
        self._proc_path = proc_path
        self._discovery = SensorDiscovery()
        self._core_map: dict[int, int] = {}
        self._core_temps: list[int] = []

    @property
    def sensors(self) -> dict[str, SensorRecord]:
        return self._discovery.sensors

    @property
    def primary(self) -> SensorRecord | None:
        name = self._discovery.primary
        return self._discovery.sensors.get(name) if name else None

    @property
    def primary_name(self) -> str | None:
        return self._discovery.primary

    @property
    def core_sensors(self) -> list[str]:
        return list(self._discovery.core_sensors)

    @property
    def low_confidence(self) -> bool:
        return self._discovery.low_confidence

    @property
    def has_core_temperatures(self) -> bool:
        """Per-core temperatures are reported only when core sensors exist."""
        return bool(self._discovery.core_sensors)

    @property
    def core_map(self) -> dict[int, int]:
        return dict(self._core_map)

    def discover(self) -> SensorDiscovery:
        """Run discovery and replace any previous result."""
        self._discovery = discover_sensors(self._fs, self._config.cpu_sensor)
        logger.info(
            "Found %d temperature sensors, primary=%s, %d per-core",
            len(self._discovery.sensors),
            self._discovery.primary,
            len(self._discovery.core_sensors),
        )
        return self._discovery

    def map_cores(self, core_count: int) -> dict[int, int]:
        """(Re)build the core map and resize the per-core temperature slots."""
        self._resize(core_count)
        if not self.has_core_temperatures:
            self._core_map = {}
            return {}

        try:
            cpuinfo = self._fs.read_text(f"{self._proc_path}/cpuinfo")
        except OSError:
            cpuinfo = ""

        self._core_map = map_cores(
            core_count,
            len(self._discovery.core_sensors),
            read_core_topology(cpuinfo),
            self._config.core_map_overrides,
        )
        return dict(self._core_map)

    def _resize(self, core_count: int) -> None:
        if len(self._core_temps) < core_count:
            self._core_temps.extend([0] * (core_count - len(self._core_temps)))
        else:
            del self._core_temps[core_count:]

    def _read(self, name: str) -> None:
        record = self._discovery.sensors[name]
        try:
            record.temp = millidegrees(self._fs.read_text(record.path))
        except (OSError, ValueError) as e:
            logger.debug("Keeping last temperature of %s: %s", name, e)

    def refresh(self) -> None:
        """Re-read the primary sensor and every unique per-core sensor once."""
        if self._discovery.primary is None:
            return

        self._read(self._discovery.primary)

        if not self.has_core_temperatures:
            return

        core_sensors = self._discovery.core_sensors
        for name in dict.fromkeys(core_sensors[i] for i in self._core_map.values()):
            if name != self._discovery.primary:
                self._read(name)

        for core, index in self._core_map.items():
            if core < len(self._core_temps) and index < len(core_sensors):
                self._core_temps[core] = self._discovery.sensors[core_sensors[index]].temp

    def core_temperatures(self) -> list[int]:
        return list(self._core_temps)
