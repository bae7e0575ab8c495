"""
CAN bus configuration schemes.

Three mutually exclusive ways of bringing up can0 on a Klipper host:

    Legacy      ifupdown, /etc/network/interfaces.d/can0
    Esoterical  systemd-networkd .network file + udev rule for the queue length
    Gemini      systemd-networkd .network file + oneshot unit for the queue length

Each scheme knows which files it owns, how to render them from a
bitrate/queue length pair, and how to read those values back.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from cantastic.errors import InvalidParameterError

BITRATE_CHOICES = (125000, 250000, 375000, 500000, 625000, 750000, 875000, 1000000)
TXQUEUELEN_CHOICES = (128, 256, 384, 512, 640, 768, 896, 1024)

# Klipper's recommendations
RECOMMENDED_BITRATE = 1000000
RECOMMENDED_TXQUEUELEN = 128


class ConfigurationScheme(Enum):
    """The CAN configuration method currently installed on disk."""

    UNKNOWN = "Unknown"
    LEGACY = "Legacy"
    ESOTERICAL = "Esoterical"
    ESOTERICAL_BROKEN = "Esoterical-Broken"
    GEMINI = "Gemini"
    GEMINI_BROKEN = "Gemini-Broken"
    MULTIPLE = "Multiple"

    @property
    def is_broken(self) -> bool:
        return self in (ConfigurationScheme.ESOTERICAL_BROKEN, ConfigurationScheme.GEMINI_BROKEN)

    @property
    def is_systemd(self) -> bool:
        return self in (
            ConfigurationScheme.ESOTERICAL,
            ConfigurationScheme.ESOTERICAL_BROKEN,
            ConfigurationScheme.GEMINI,
            ConfigurationScheme.GEMINI_BROKEN,
        )

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DesiredParameters:
    """Bitrate and transmit queue length chosen by the operator.

    Raises:
        InvalidParameterError: If either value is not one of the menu choices.
    """

    bitrate: int
    tx_queue_length: int

    def __post_init__(self):
        if self.bitrate not in BITRATE_CHOICES:
            raise InvalidParameterError(
                f"Unsupported bitrate {self.bitrate}. "
                f"Choose one of: {', '.join(str(b) for b in BITRATE_CHOICES)}"
            )
        if self.tx_queue_length not in TXQUEUELEN_CHOICES:
            raise InvalidParameterError(
                f"Unsupported txqueuelen {self.tx_queue_length}. "
                f"Choose one of: {', '.join(str(q) for q in TXQUEUELEN_CHOICES)}"
            )


@dataclass(frozen=True)
class PersistedParameters:
    """Values read back from the files on disk, as text. None means not found."""

    bitrate: Optional[str] = None
    tx_queue_length: Optional[str] = None

    def mismatches(self, desired: DesiredParameters) -> Dict[str, Tuple[str, Optional[str]]]:
        """Return {field: (expected, found)} for every field that differs."""
        result = {}
        if self.bitrate != str(desired.bitrate):
            result["bitrate"] = (str(desired.bitrate), self.bitrate)
        if self.tx_queue_length != str(desired.tx_queue_length):
            result["txqueuelen"] = (str(desired.tx_queue_length), self.tx_queue_length)
        return result

    def matches(self, desired: DesiredParameters) -> bool:
        return not self.mismatches(desired)

    @property
    def is_empty(self) -> bool:
        return self.bitrate is None and self.tx_queue_length is None


# ─────────────────────────────────────────────────────────────────────────────
# Text extraction
# ─────────────────────────────────────────────────────────────────────────────

def _digits_after(prefix: str) -> Callable[[str], Optional[str]]:
    """Rule returning the digits that follow `prefix` (grep -oP '(?<=prefix)\\d+')."""
    pattern = re.compile(re.escape(prefix) + r"(\d+)")

    def rule(text: str) -> Optional[str]:
        match = pattern.search(text)
        return match.group(1) if match else None

    return rule


def _last_token_of_line(keyword: str) -> Callable[[str], Optional[str]]:
    """Rule returning the last whitespace token of the first line containing `keyword`."""

    def rule(text: str) -> Optional[str]:
        for line in text.splitlines():
            if keyword in line:
                tokens = line.split()
                return tokens[-1] if tokens else None
        return None

    return rule


def _second_token_of_line(line_start: str) -> Callable[[str], Optional[str]]:
    """Rule returning the second token of the first line starting with `line_start`."""
    pattern = re.compile(r"^\s*" + re.escape(line_start))

    def rule(text: str) -> Optional[str]:
        for line in text.splitlines():
            if pattern.match(line):
                tokens = line.split()
                return tokens[1] if len(tokens) > 1 else None
        return None

    return rule


# ─────────────────────────────────────────────────────────────────────────────
# Templates
# ─────────────────────────────────────────────────────────────────────────────

LEGACY_TEMPLATE = """\
allow-hotplug can0
iface can0 can static
    bitrate {bitrate}
    up ip link set $IFACE txqueuelen {txqueuelen}
"""

ESOTERICAL_NETWORK_TEMPLATE = """\
[Match]
Name=can*

[CAN]
BitRate={bitrate}
RestartSec=0.1s

[Link]
RequiredForOnline=no
"""

ESOTERICAL_RULES_TEMPLATE = """\
SUBSYSTEM=="net", ACTION=="change|add", KERNEL=="can*", ATTR{{tx_queue_len}}={txqueuelen}
"""

GEMINI_NETWORK_TEMPLATE = """\
[Match]
Name=can*

[CAN]
BitRate={bitrate}
"""

GEMINI_SERVICE_TEMPLATE = """\
[Service]
Type=oneshot
ExecStart=/usr/sbin/ifconfig can0 txqueuelen {txqueuelen}

[Install]
WantedBy=sys-subsystem-net-devices-can0.device
"""


def resolve_path(root: Union[str, Path], path: str) -> Path:
    """Place an absolute system path under `root`."""
    return Path(root) / path.lstrip("/")


@dataclass(frozen=True)
class SchemeDefinition:
    """Files, templates and extraction rules for one installable scheme.

    Args:
        scheme: The scheme this definition installs.
        bitrate_file: Absolute path of the file holding the bitrate.
        queue_file: Absolute path of the file holding the queue length.
            Same as bitrate_file for single-file schemes.
        bitrate_template / queue_template: str.format templates taking
            `bitrate` and `txqueuelen`.
        dependencies: Debian packages the scheme needs besides can-utils.
        uses_networkd: Whether systemd-networkd must be prepared and restarted.
        description: One-line summary for menus.
    """

    scheme: ConfigurationScheme
    bitrate_file: str
    queue_file: str
    bitrate_template: str
    queue_template: str
    dependencies: Tuple[str, ...]
    uses_networkd: bool
    description: str
    bitrate_rule: Callable[[str], Optional[str]] = field(compare=False, repr=False, default=None)
    queue_rule: Callable[[str], Optional[str]] = field(compare=False, repr=False, default=None)

    @property
    def name(self) -> str:
        return self.scheme.value

    @property
    def paths(self) -> Tuple[str, ...]:
        """Ordered, de-duplicated file paths owned by this scheme."""
        if self.bitrate_file == self.queue_file:
            return (self.bitrate_file,)
        return (self.bitrate_file, self.queue_file)

    def resolve(self, root: Union[str, Path] = "/") -> List[Path]:
        return [resolve_path(root, p) for p in self.paths]

    def render(self, desired: DesiredParameters) -> Dict[str, str]:
        """Render file contents keyed by absolute path."""
        values = {"bitrate": desired.bitrate, "txqueuelen": desired.tx_queue_length}
        if self.bitrate_file == self.queue_file:
            return {self.bitrate_file: self.bitrate_template.format(**values)}
        return {
            self.bitrate_file: self.bitrate_template.format(**values),
            self.queue_file: self.queue_template.format(**values),
        }


LEGACY = SchemeDefinition(
    scheme=ConfigurationScheme.LEGACY,
    bitrate_file="/etc/network/interfaces.d/can0",
    queue_file="/etc/network/interfaces.d/can0",
    bitrate_template=LEGACY_TEMPLATE,
    queue_template=LEGACY_TEMPLATE,
    dependencies=("ifupdown", "net-tools"),
    uses_networkd=False,
    description="Legacy uses ifupdown (/etc/network/interfaces.d).",
    bitrate_rule=_second_token_of_line("bitrate"),
    queue_rule=_last_token_of_line("txqueuelen"),
)

ESOTERICAL = SchemeDefinition(
    scheme=ConfigurationScheme.ESOTERICAL,
    bitrate_file="/etc/systemd/network/25-can.network",
    queue_file="/etc/udev/rules.d/10-can.rules",
    bitrate_template=ESOTERICAL_NETWORK_TEMPLATE,
    queue_template=ESOTERICAL_RULES_TEMPLATE,
    dependencies=("systemd",),
    uses_networkd=True,
    description="Esoterical uses systemd and is the modern method for newer Debian versions.",
    bitrate_rule=_digits_after("BitRate="),
    queue_rule=_digits_after("ATTR{tx_queue_len}="),
)

GEMINI = SchemeDefinition(
    scheme=ConfigurationScheme.GEMINI,
    bitrate_file="/etc/systemd/network/80-can.network",
    queue_file="/etc/systemd/system/can-up.service",
    bitrate_template=GEMINI_NETWORK_TEMPLATE,
    queue_template=GEMINI_SERVICE_TEMPLATE,
    dependencies=("systemd",),
    uses_networkd=True,
    description="Gemini is similar to Esoterical but has different configuration and service files.",
    bitrate_rule=_digits_after("BitRate="),
    queue_rule=_last_token_of_line("txqueuelen "),
)

# Installable schemes in menu order
SCHEMES: Dict[ConfigurationScheme, SchemeDefinition] = {
    ConfigurationScheme.ESOTERICAL: ESOTERICAL,
    ConfigurationScheme.GEMINI: GEMINI,
    ConfigurationScheme.LEGACY: LEGACY,
}


def get_definition(scheme: ConfigurationScheme) -> SchemeDefinition:
    """Return the definition of an installable scheme.

    Raises:
        KeyError: For Unknown, Multiple and the broken states.
    """
    return SCHEMES[scheme]


def scheme_from_name(name: str) -> ConfigurationScheme:
    """Look up an installable scheme by its (case-insensitive) name."""
    for scheme in SCHEMES:
        if scheme.value.lower() == name.strip().lower():
            return scheme
    valid = ", ".join(s.value.lower() for s in SCHEMES)
    raise ValueError(f"Unknown configuration method '{name}'. Valid methods: {valid}")


def all_paths() -> List[str]:
    """Every file path owned by any scheme, in detection order."""
    return list(LEGACY.paths + ESOTERICAL.paths + GEMINI.paths)
