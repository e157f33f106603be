"""Engine configuration for pyhwstat."""

import os
from dataclasses import dataclass, field

DEFAULT_EXCLUDED_FS_TYPES = frozenset(
    {"nodev", "squashfs", "nullfs", "zfs", "wslfs", "drvfs"}
)


@dataclass(slots=True, frozen=True)
class EngineConfig:
    """
    Tunables shared by the CPU and memory engines.

    All fields have defaults suitable for a regular Linux host, so
    ``EngineConfig()`` is a valid configuration.
    """

    root: str = "/"
    static_mounts: tuple[str, ...] = ()
    excluded_fs_types: frozenset[str] = DEFAULT_EXCLUDED_FS_TYPES
    cpu_sensor: str = "Auto"
    core_map_overrides: dict[int, int] = field(default_factory=dict)
    freq_fast_path_failures: int = 2
    freq_failure_limit: int = 5
    poll_rate: float = 2.0

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "EngineConfig":
        """
        Build a configuration from ``PYHWSTAT_*`` environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.
        """
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        if env.get("PYHWSTAT_ROOT"):
            kwargs["root"] = env["PYHWSTAT_ROOT"]
        if env.get("PYHWSTAT_STATIC_MOUNTS"):
            kwargs["static_mounts"] = tuple(
                m.strip() for m in env["PYHWSTAT_STATIC_MOUNTS"].split(",") if m.strip()
            )
        if env.get("PYHWSTAT_CPU_SENSOR"):
            kwargs["cpu_sensor"] = env["PYHWSTAT_CPU_SENSOR"]
        if env.get("PYHWSTAT_POLL_RATE"):
            try:
                kwargs["poll_rate"] = max(0.1, float(env["PYHWSTAT_POLL_RATE"]))
            except ValueError:
                pass  # keep default

        return cls(**kwargs)
