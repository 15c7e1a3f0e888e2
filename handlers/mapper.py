"""Maps decoded uplinks onto InfluxDB field sets."""
# Copyright (c) 2026 LN4CY
# This software is licensed under the MIT License. See LICENSE file for details.

import math
import logging

from handlers.uplink import is_numeric

logger = logging.getLogger("ttn-bridge.handlers.mapper")

DEFAULT_MEASUREMENT = "air_quality"

# Fixed pm10 field names for the two MKR WAN boards
PM10_FIELD_BY_DEVICE = {
    "mkrwan-1": "pm10_1",
    "mkrwan-2": "pm10_2",
}


class MetricPoint:
    """One write unit for the sink: measurement, tags, numeric fields and time (epoch seconds)."""

    def __init__(self, measurement, tags, fields, time=None):
        self.measurement = measurement
        self.tags = tags
        self.fields = fields
        self.time = time

    def __eq__(self, other):
        if not isinstance(other, MetricPoint):
            return NotImplemented
        return ((self.measurement, self.tags, self.fields, self.time)
                == (other.measurement, other.tags, other.fields, other.time))

    def __repr__(self):
        return f"MetricPoint({self.measurement!r}, tags={self.tags!r}, fields={self.fields!r}, time={self.time!r})"


def pm10_field_name(device_id):
    """Per-device pm10 field name, so devices never overwrite each other."""
    return PM10_FIELD_BY_DEVICE.get(device_id, f"pm10_{device_id}")


def encode_field(value):
    """Encode a reading as a float field value; raises ValueError if it can't be stored."""
    if not is_numeric(value):
        raise ValueError(f"unsupported value type {type(value).__name__}")
    encoded = float(value)
    # Line protocol has no representation for NaN or +/-inf
    if not math.isfinite(encoded):
        raise ValueError(f"non-finite value {encoded!r}")
    return encoded


def map_uplink(message, measurement=DEFAULT_MEASUREMENT, received_at=None):
    """
    Build the MetricPoint for an UplinkMessage.

    Args:
        message: Decoded UplinkMessage.
        measurement: Measurement name.
        received_at: Receipt time in epoch seconds, truncated to whole seconds.
    """
    fields = {}
    for key, value in message.fields.items():
        name = key
        if key == "pm10":
            name = pm10_field_name(message.device_id)
            # A field already named like the rewrite target wins over the renamed pm10
            if name in message.fields:
                logger.warning("Device %s: payload already has '%s', dropping renamed 'pm10'",
                               message.device_id, name)
                continue
        try:
            fields[name] = encode_field(value)
        except (ValueError, TypeError, OverflowError) as e:
            logger.warning("Device %s: skipping field '%s': %s", message.device_id, key, e)

    time = int(received_at) if received_at is not None else None
    return MetricPoint(measurement, {"device": message.device_id}, fields, time=time)
