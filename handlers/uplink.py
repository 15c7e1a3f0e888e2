"""Uplink message decoding for TTN v3 MQTT payloads."""
# Copyright (c) 2026 LN4CY
# This software is licensed under the MIT License. See LICENSE file for details.

import json
import logging

logger = logging.getLogger("ttn-bridge.handlers.uplink")


class UplinkDecodeError(ValueError):
    """Base class for uplinks that cannot be turned into a measurement."""


class MalformedPayload(UplinkDecodeError):
    """Payload is not a JSON object."""


class MissingDeviceId(UplinkDecodeError):
    """end_device_ids.device_id is absent or not a string."""


class MissingDecodedPayload(UplinkDecodeError):
    """uplink_message.decoded_payload is absent or not an object."""


class UplinkMessage:
    """Numeric readings of a single uplink, keyed by field name."""

    def __init__(self, device_id, fields, topic=None):
        self.device_id = device_id
        self.fields = fields
        self.topic = topic

    def __repr__(self):
        return f"UplinkMessage(device_id={self.device_id!r}, fields={self.fields!r})"


def is_numeric(value):
    # bool is an int subclass but JSON true/false are not readings
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def decode_uplink(payload, topic=None):
    """
    Decode a raw TTN uplink into an UplinkMessage.

    Args:
        payload: Raw MQTT message body (bytes or str).
        topic: Topic the message arrived on, kept for logging.

    Raises:
        MalformedPayload: body is not a JSON object.
        MissingDeviceId: no string end_device_ids.device_id.
        MissingDecodedPayload: no object uplink_message.decoded_payload.
    """
    try:
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        document = json.loads(payload)
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        raise MalformedPayload(f"Invalid JSON payload: {e}") from e

    if not isinstance(document, dict):
        raise MalformedPayload(f"Expected a JSON object, got {type(document).__name__}")

    device_ids = document.get("end_device_ids")
    device_id = device_ids.get("device_id") if isinstance(device_ids, dict) else None
    if not isinstance(device_id, str) or not device_id:
        raise MissingDeviceId("end_device_ids.device_id missing")

    uplink = document.get("uplink_message")
    decoded = uplink.get("decoded_payload") if isinstance(uplink, dict) else None
    if not isinstance(decoded, dict):
        raise MissingDecodedPayload(f"uplink_message.decoded_payload missing for device {device_id}")

    fields = {key: value for key, value in decoded.items() if is_numeric(value)}

    skipped = len(decoded) - len(fields)
    if skipped:
        logger.debug("Device %s: ignored %d non-numeric field(s)", device_id, skipped)

    return UplinkMessage(device_id, fields, topic=topic)
