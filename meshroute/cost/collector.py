"""
Cost Factor Collection - Platform-specific device telemetry sampling.

Samples battery, CPU, memory pressure, thermal and network state into a
CostSnapshot. Every reading is independent: a source that cannot be read
is replaced by its neutral default and the sample still succeeds.
"""

from __future__ import annotations

import logging
import platform
import re
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional, TypeVar

import psutil

from .model import CostSnapshot, NetworkType, ThermalState

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substituted when a telemetry source is unavailable
NEUTRAL_DEFAULTS = {
    "battery_level": 100,
    "is_charging": True,  # Desktop without battery
    "cpu_usage": 0.0,
    "memory_pressure": 0.5,  # Assume moderate pressure
    "thermal_state": ThermalState.NONE,
    "network_type": NetworkType.UNKNOWN,
    "signal_strength": 2,  # Middle value
}

# Interface name prefixes
_ETHERNET_PREFIXES = ("eth", "en", "eno", "ens", "enp", "em")
_WIFI_PREFIXES = ("wl", "wlan", "wifi", "ath", "ra")
_CELLULAR_PREFIXES = ("wwan", "rmnet", "ppp", "usb", "ccmni")


class CostCollector:
    """
    Cross-platform telemetry sampling via psutil.

    Usable on its own; platform subclasses override the readers they can
    do better.
    """

    def __init__(self, node_id: Optional[str] = None):
        """
        Initialize collector.

        Args:
            node_id: Unique identifier for this node. Defaults to hostname.
        """
        self.node_id = node_id or platform.node()
        self._closed = False

    def sample(self) -> CostSnapshot:
        """Sample all cost factors for this node. Never raises."""
        battery_level, is_charging = self._read(
            "battery",
            self._get_power_state,
            (NEUTRAL_DEFAULTS["battery_level"], NEUTRAL_DEFAULTS["is_charging"]),
        )
        network_type = self._read("network", self._get_network_type, NEUTRAL_DEFAULTS["network_type"])
        signal_strength = self._read(
            "signal",
            lambda: self._get_signal_strength(network_type),
            NEUTRAL_DEFAULTS["signal_strength"],
        )

        return CostSnapshot.from_dict(
            {
                "battery_level": battery_level,
                "is_charging": is_charging,
                "cpu_usage": self._read("cpu", self._get_cpu_usage, NEUTRAL_DEFAULTS["cpu_usage"]),
                "memory_pressure": self._read(
                    "memory", self._get_memory_pressure, NEUTRAL_DEFAULTS["memory_pressure"]
                ),
                "thermal_state": self._read(
                    "thermal", self._get_thermal_state, NEUTRAL_DEFAULTS["thermal_state"]
                ),
                "network_type": network_type,
                "signal_strength": signal_strength,
                "timestamp": time.time(),
            },
            node_id=self.node_id,
        )

    def close(self) -> None:
        """Release the sampler."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _read(self, name: str, reader: Callable[[], T], default: T) -> T:
        try:
            value = reader()
        except Exception as e:
            logger.warning(f"Telemetry source '{name}' unavailable, using default {default!r}: {e}")
            return default
        if value is None:
            logger.debug(f"Telemetry source '{name}' returned nothing, using default {default!r}")
            return default
        return value

    # --- psutil readers (cross-platform) ---

    def _get_power_state(self) -> Optional[tuple[int, bool]]:
        """
        Get power state using psutil.

        Returns:
            (battery_level, is_charging), or None if there is no battery
        """
        battery = psutil.sensors_battery()
        if battery is None:
            return None
        return int(round(battery.percent)), bool(battery.power_plugged)

    def _get_cpu_usage(self) -> float:
        """
        CPU utilisation 0.0-1.0 since the previous call.

        Non-blocking: the first call after start-up reports 0.0.
        """
        return psutil.cpu_percent(interval=None) / 100.0

    def _get_memory_pressure(self) -> float:
        """Fraction of physical memory in use (0.0-1.0)."""
        return psutil.virtual_memory().percent / 100.0

    def _get_thermal_state(self) -> Optional[ThermalState]:
        """Map the hottest sensor against its high/critical trip points."""
        reader = getattr(psutil, "sensors_temperatures", None)
        if reader is None:
            return None
        temps = reader()
        if not temps:
            return None

        worst = ThermalState.NONE
        for entries in temps.values():
            for entry in entries:
                state = _thermal_from_reading(entry.current, entry.high, entry.critical)
                if list(ThermalState).index(state) > list(ThermalState).index(worst):
                    worst = state
        return worst

    def _get_network_type(self) -> NetworkType:
        """Classify the active (up, non-loopback) interfaces by name."""
        stats = psutil.net_if_stats()
        up = [name for name, st in stats.items() if st.isup and not name.startswith("lo")]
        return _network_from_interfaces(up)

    def _get_signal_strength(self, network_type: NetworkType) -> int:
        """Signal bars (0-4). Wired and Wi-Fi report full strength."""
        if network_type.is_cellular:
            return NEUTRAL_DEFAULTS["signal_strength"]
        return 4


def _thermal_from_reading(
    current: Optional[float],
    high: Optional[float],
    critical: Optional[float],
) -> ThermalState:
    """Map one temperature reading onto the thermal scale."""
    if current is None:
        return ThermalState.NONE
    if critical and current >= critical:
        return ThermalState.CRITICAL
    if not high:
        return ThermalState.NONE
    if current >= high:
        return ThermalState.SEVERE
    if current >= high - 10:
        return ThermalState.MODERATE
    if current >= high - 20:
        return ThermalState.LIGHT
    return ThermalState.NONE


def _network_from_interfaces(names: list[str]) -> NetworkType:
    """Best connection among the active interfaces, wired first."""
    if not names:
        return NetworkType.NONE

    lowered = [n.lower() for n in names]
    if any(n.startswith(_ETHERNET_PREFIXES) for n in lowered):
        return NetworkType.ETHERNET
    if any(n.startswith(_WIFI_PREFIXES) for n in lowered):
        return NetworkType.WIFI
    if any(n.startswith(_CELLULAR_PREFIXES) for n in lowered):
        # Generation is not exposed by interface names
        return NetworkType.CELLULAR_4G
    return NetworkType.UNKNOWN


class LinuxCostCollector(CostCollector):
    """Telemetry for Linux (including Android userlands)."""

    POWER_SUPPLY = Path("/sys/class/power_supply")
    THERMAL_ZONES = Path("/sys/class/thermal")
    NET_CLASS = Path("/sys/class/net")

    def _get_power_state(self) -> Optional[tuple[int, bool]]:
        """Get power state from /sys, falling back to psutil."""
        if self.POWER_SUPPLY.exists():
            for p in sorted(self.POWER_SUPPLY.iterdir()):
                if p.name.startswith("BAT"):
                    try:
                        status = (p / "status").read_text().strip()
                        capacity = int((p / "capacity").read_text().strip())
                    except (OSError, ValueError):
                        break
                    return capacity, status in ("Charging", "Full", "Not charging")
        return super()._get_power_state()

    def _get_thermal_state(self) -> Optional[ThermalState]:
        """Use thermal zone trip points when psutil has no sensors."""
        state = super()._get_thermal_state()
        if state is not None:
            return state
        if not self.THERMAL_ZONES.exists():
            return None

        worst: Optional[ThermalState] = None
        for zone in sorted(self.THERMAL_ZONES.glob("thermal_zone*")):
            try:
                current = int((zone / "temp").read_text().strip()) / 1000.0
            except (OSError, ValueError):
                continue
            high, critical = self._trip_points(zone)
            state = _thermal_from_reading(current, high, critical)
            if worst is None or list(ThermalState).index(state) > list(ThermalState).index(worst):
                worst = state
        return worst

    def _trip_points(self, zone: Path) -> tuple[Optional[float], Optional[float]]:
        high = critical = None
        for type_file in zone.glob("trip_point_*_type"):
            kind = type_file.read_text().strip()
            temp_file = zone / type_file.name.replace("_type", "_temp")
            try:
                temp = int(temp_file.read_text().strip()) / 1000.0
            except (OSError, ValueError):
                continue
            if kind == "critical":
                critical = temp
            elif kind in ("hot", "passive") and (high is None or temp < high):
                high = temp
        return high, critical

    def _get_network_type(self) -> NetworkType:
        """Prefer /sys/class/net wireless markers over name heuristics."""
        if not self.NET_CLASS.exists():
            return super()._get_network_type()

        stats = psutil.net_if_stats()
        kinds = set()
        for name, st in stats.items():
            if not st.isup or name.startswith("lo"):
                continue
            iface = self.NET_CLASS / name
            if (iface / "wireless").exists() or (iface / "phy80211").exists():
                kinds.add(NetworkType.WIFI)
            elif (iface / "device").exists():
                kinds.add(_network_from_interfaces([name]))
            else:
                # Virtual interfaces (docker, bridges) don't carry traffic off-box
                continue

        for preferred in (NetworkType.ETHERNET, NetworkType.WIFI, NetworkType.CELLULAR_4G):
            if preferred in kinds:
                return preferred
        if kinds:
            return NetworkType.UNKNOWN
        return super()._get_network_type()


class MacOSCostCollector(CostCollector):
    """Telemetry for macOS."""

    def _get_thermal_state(self) -> Optional[ThermalState]:
        """
        Read the CPU speed limit from ``pmset -g therm``.

        macOS does not expose temperatures without root; the scheduler
        speed limit is the closest public signal of throttling.
        """
        result = subprocess.run(
            ["/usr/bin/pmset", "-g", "therm"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        match = re.search(r"CPU_Speed_Limit\s*=\s*(\d+)", result.stdout)
        if not match:
            return ThermalState.NONE

        limit = int(match.group(1))
        if limit >= 100:
            return ThermalState.NONE
        elif limit >= 80:
            return ThermalState.LIGHT
        elif limit >= 60:
            return ThermalState.MODERATE
        elif limit >= 40:
            return ThermalState.SEVERE
        else:
            return ThermalState.CRITICAL

    def _get_network_type(self) -> NetworkType:
        """iPhone USB/Wi-Fi tethering counts as cellular."""
        result = subprocess.run(
            ["/usr/sbin/networksetup", "-listallhardwareports"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if "iPhone" in result.stdout:
            return NetworkType.CELLULAR_4G
        return super()._get_network_type()


class StubCostCollector(CostCollector):
    """Collector for unsupported platforms or containers."""

    def sample(self) -> CostSnapshot:
        """Return neutral defaults."""
        return CostSnapshot(
            battery_level=NEUTRAL_DEFAULTS["battery_level"],
            is_charging=NEUTRAL_DEFAULTS["is_charging"],
            cpu_usage=NEUTRAL_DEFAULTS["cpu_usage"],
            memory_pressure=NEUTRAL_DEFAULTS["memory_pressure"],
            thermal_state=NEUTRAL_DEFAULTS["thermal_state"],
            network_type=NEUTRAL_DEFAULTS["network_type"],
            signal_strength=NEUTRAL_DEFAULTS["signal_strength"],
            node_id=self.node_id,
            timestamp=time.time(),
        )


def get_cost_collector(node_id: Optional[str] = None) -> CostCollector:
    """
    Get the appropriate cost collector for the current platform.

    Args:
        node_id: Optional node identifier. Defaults to hostname.

    Returns:
        Platform-specific CostCollector instance
    """
    system = platform.system()

    if system == "Darwin":
        return MacOSCostCollector(node_id)
    elif system == "Linux":
        return LinuxCostCollector(node_id)
    else:
        # Windows or unknown - neutral defaults
        return StubCostCollector(node_id)
