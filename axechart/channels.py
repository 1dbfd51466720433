"""Fixed set of telemetry channels plotted on the chart."""

from enum import IntEnum
from typing import List


class Channel(IntEnum):
    """Chart channels, in dataset order."""

    HASHRATE_1M = 0
    HASHRATE_10M = 1
    HASHRATE_1H = 2
    HASHRATE_1D = 3
    VREG_TEMP = 4
    ASIC_TEMP = 5

    @property
    def key(self) -> str:
        return _KEYS[self]

    @property
    def is_hashrate(self) -> bool:
        return self <= Channel.HASHRATE_1D

    @property
    def is_temperature(self) -> bool:
        return self >= Channel.VREG_TEMP

    @classmethod
    def from_key(cls, key: str) -> "Channel":
        for channel, channel_key in _KEYS.items():
            if channel_key == key:
                return channel
        raise ValueError(f"Unknown channel key: {key}")


_KEYS = {
    Channel.HASHRATE_1M: "hashrate_1m",
    Channel.HASHRATE_10M: "hashrate_10m",
    Channel.HASHRATE_1H: "hashrate_1h",
    Channel.HASHRATE_1D: "hashrate_1d",
    Channel.VREG_TEMP: "vregTemp",
    Channel.ASIC_TEMP: "asicTemp",
}

ALL_CHANNELS: List[Channel] = list(Channel)
HASHRATE_CHANNELS: List[Channel] = [c for c in Channel if c.is_hashrate]
TEMPERATURE_CHANNELS: List[Channel] = [c for c in Channel if c.is_temperature]
