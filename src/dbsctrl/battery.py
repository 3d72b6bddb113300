"""
Battery telemetry conversion.

The node reports its cell voltage in millivolts; the operator sees a
percentage interpolated linearly between the empty and full voltages.
"""

from dataclasses import dataclass

from .core import BATTERY_EMPTY_MV, BATTERY_FULL_MV


@dataclass(frozen=True)
class BatteryMapper:
    """Linear millivolt to percent mapping for one cell chemistry."""

    empty_mv: int = BATTERY_EMPTY_MV
    full_mv: int = BATTERY_FULL_MV

    def __post_init__(self) -> None:
        if self.full_mv <= self.empty_mv:
            raise ValueError(
                f"full_mv ({self.full_mv}) must be above empty_mv ({self.empty_mv})"
            )

    def millivolts_to_percent(self, mv: int) -> int:
        """Convert a raw millivolt reading to 0-100.

        Args:
            mv: Raw cell voltage in millivolts

        Returns:
            Percentage, clamped before rounding to the nearest integer
        """
        percent = (mv - self.empty_mv) * 100.0 / (self.full_mv - self.empty_mv)
        percent = min(max(percent, 0.0), 100.0)
        return int(percent + 0.5)


DEFAULT_BATTERY = BatteryMapper()


def millivolts_to_percent(mv: int) -> int:
    """Convert millivolts to percent using the default calibration."""
    return DEFAULT_BATTERY.millivolts_to_percent(mv)
