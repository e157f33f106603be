"""CPU marketing-name derivation.

The raw ``model name`` string is shortened by an ordered list of rules.
Each rule is a predicate and a transform over the string and its words; the
first rule whose predicate matches decides the name. If its transform yields
an empty string, the generic cleanup is applied instead.
"""

from collections.abc import Callable
from dataclasses import dataclass

from pyhwstat.hostfs import HostFS

BOILERPLATE = ("Processor", "CPU", "(R)", "(TM)", "Intel", "AMD", "Core")


@dataclass(slots=True, frozen=True)
class NameRule:
    name: str
    matches: Callable[[str, list[str]], bool]
    transform: Callable[[str, list[str]], str]


def _word_after(words: list[str], marker: str, *reject: str) -> str:
    pos = words.index(marker)
    if pos >= len(words) - 1:
        return ""
    candidate = words[pos + 1]
    if candidate.endswith(")") or candidate in reject:
        return ""
    return candidate


def _ryzen(name: str, words: list[str]) -> str:
    pos = words.index("Ryzen")
    return " ".join(["Ryzen", *words[pos + 1 : pos + 3]])


NAME_RULES: tuple[NameRule, ...] = (
    NameRule(
        "xeon-or-duo",
        lambda name, words: ("Xeon" in name or "Duo" in words) and "CPU" in words,
        lambda name, words: _word_after(words, "CPU"),
    ),
    NameRule(
        "ryzen",
        lambda name, words: "Ryzen" in words,
        _ryzen,
    ),
    NameRule(
        "intel",
        lambda name, words: "Intel" in name and "CPU" in words,
        lambda name, words: _word_after(words, "CPU", "@"),
    ),
)


def strip_boilerplate(words: list[str]) -> str:
    """Join the words before '@' and drop vendor and trademark noise."""
    kept: list[str] = []
    for word in words:
        if word == "@":
            break
        kept.append(word)

    name = " ".join(kept)
    for noise in BOILERPLATE:
        name = name.replace(noise, "")
        name = name.replace("  ", " ")
    return " ".join(name.split())


def shorten_cpu_name(model_name: str, rules: tuple[NameRule, ...] = NAME_RULES) -> str:
    """Apply ``rules`` top-down to a raw model name; first match wins."""
    words = model_name.split()
    if not words:
        return ""

    for rule in rules:
        if rule.matches(model_name, words):
            short = rule.transform(model_name, words)
            if short:
                return short
            break

    return strip_boilerplate(words)


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:]


def arm_name_from_sysfs(fs: HostFS) -> str:
    """Derive a name from an ``arm*`` PMU directory under /sys/devices."""
    for entry in fs.list_dir("/sys/devices"):
        if not entry.startswith("arm"):
            continue
        parts = entry.split("_")
        if len(parts) < 2:
            return _capitalize(entry)
        return " ".join(_capitalize(part) for part in parts[1:3])
    return ""


def read_model_name(cpuinfo: str) -> str | None:
    for line in cpuinfo.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == "model name":
            return value.strip()
    return None


def derive_cpu_name(fs: HostFS, proc_path: str = "/proc") -> str:
    """
    Best-effort short CPU name.

    Uses ``model name`` from cpuinfo, falling back to the ARM PMU directory
    name when cpuinfo has none. Returns '' when nothing is found.
    """
    try:
        cpuinfo = fs.read_text(f"{proc_path}/cpuinfo")
    except OSError:
        return ""

    model_name = read_model_name(cpuinfo)
    if model_name is None:
        return arm_name_from_sysfs(fs)
    return shorten_cpu_name(model_name)
