"""Verification Test: Chaos Monkey - source churn resilience.

Mounts appear and vanish, sensor files disappear, cores go offline and come
back, and counters reset while the sampler is running. The sampler must keep
producing samples and every snapshot must respect its invariants.
"""

import random
import time
from queue import Empty, Queue

import pytest

from pyhwstat.cpu import CpuEngine
from pyhwstat.memory import MemoryEngine
from pyhwstat.sampler import Sample, Sampler

CORETEMP = "/sys/class/hwmon/hwmon0"


def random_stat(rng: random.Random, cores: int) -> str:
    lines = ["cpu  " + " ".join(str(rng.randint(0, 100_000)) for _ in range(10))]
    for i in range(cores):
        if rng.random() < 0.2:
            continue  # core offline this tick
        lines.append(f"cpu{i} " + " ".join(str(rng.randint(0, 50_000)) for _ in range(10)))
    return "\n".join(lines) + "\n"


def random_mounts(rng: random.Random) -> str:
    lines = ["/dev/sda1 / ext4 rw 0 0"]
    for name in ("data", "backup", "media"):
        if rng.random() < 0.5:
            lines.append(f"/dev/sdb /{name} ext4 rw 0 0")
    return "\n".join(lines) + "\n"


def assert_valid(sample: Sample) -> None:
    if sample.cpu is not None:
        cpu = sample.cpu
        assert len(cpu.cores) == cpu.core_count
        assert len(cpu.core_temperatures) == cpu.core_count
        assert all(0 <= core.percent <= 100 for core in cpu.cores)
        assert 0 <= cpu.usage.total <= 100
    if sample.memory is not None:
        for disk in sample.memory.disks:
            assert 0 <= disk.io_activity <= 100
            assert disk.io_read >= 0
            assert disk.io_write >= 0


@pytest.fixture
def chaos_root(fake_root):
    fake_root.write(f"{CORETEMP}/name", "coretemp\n")
    fake_root.write(f"{CORETEMP}/temp1_input", "45000\n")
    fake_root.write(f"{CORETEMP}/temp1_label", "Package id 0\n")
    fake_root.write(f"{CORETEMP}/temp2_input", "40000\n")
    fake_root.write(f"{CORETEMP}/temp2_label", "Core 0\n")
    fake_root.write("/sys/block/sda/stat", "1 0 1 0 1 0 1 0 0 1 0\n")
    fake_root.write("/sys/block/sdb/stat", "1 0 1 0 1 0 1 0 0 1 0\n")
    fake_root.write("/dev/sdb", "")
    for name in ("data", "backup", "media"):
        fake_root.mkdir(f"/{name}")
    return fake_root


class TestChaosMonkey:
    """Chaos Monkey verification suite tests."""

    def test_sampler_survives_source_churn(self, chaos_root):
        """Test the sampler keeps running while every source churns."""
        rng = random.Random(42)
        env = chaos_root.env(core_count=4)
        queue: Queue[Sample] = Queue()
        sampler = Sampler(
            queue,
            poll_rate=0.1,
            cpu_engine=CpuEngine(env),
            memory_engine=MemoryEngine(env),
        )

        try:
            sampler.start()
            samples = 0
            deadline = time.time() + 3.0

            while time.time() < deadline:
                chaos_root.write("/proc/stat", random_stat(rng, rng.randint(2, 6)))
                chaos_root.write("/proc/self/mounts", random_mounts(rng))
                counters = " ".join(str(rng.randint(0, 10_000)) for _ in range(11))
                chaos_root.write("/sys/block/sdb/stat", counters + "\n")
                if rng.random() < 0.3:
                    chaos_root.write(f"{CORETEMP}/temp2_input", "garbage\n")
                else:
                    chaos_root.write(f"{CORETEMP}/temp2_input", f"{rng.randint(30, 90)}000\n")

                try:
                    sample = queue.get(timeout=1.0)
                except Empty:
                    continue
                samples += 1
                assert_valid(sample)

            assert samples >= 3, f"Expected at least 3 samples, got {samples}"
            assert sampler.is_running, "Sampler should still be running after chaos"
        finally:
            sampler.stop()

    def test_direct_collection_under_churn(self, chaos_root):
        """Test engines stay consistent over many churned ticks without a thread."""
        rng = random.Random(7)
        env = chaos_root.env(core_count=2)
        cpu = CpuEngine(env)
        memory = MemoryEngine(env)
        max_cores = 0

        for _ in range(200):
            cores = rng.randint(1, 8)
            chaos_root.write("/proc/stat", random_stat(rng, cores))
            chaos_root.write("/proc/self/mounts", random_mounts(rng))

            snapshot = cpu.collect()
            max_cores = max(max_cores, snapshot.core_count)
            assert snapshot.core_count == max_cores
            assert_valid(Sample(timestamp=0.0, cpu=snapshot, memory=memory.collect()))
