import os
import sys
from unittest.mock import patch

import pytest

# Add parent directory to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config

TEST_ENV = {
    "TTN_MQTT_SERVER": "mqtts://au1.cloud.thethings.network:8883",
    "TTN_USERNAME": "srsp-lorawan@ttn",
    "TTN_PASSWORD": "NNSXS.TEST",
    "INFLUX_URL": "http://influxdb:8086",
    "INFLUX_TOKEN": "test-token",
    "INFLUX_ORG": "test-org",
    "INFLUX_BUCKET": "ttn_data",
}


@pytest.fixture
def config():
    """Config built from a known environment."""
    with patch.dict(os.environ, TEST_ENV, clear=True):
        return Config()
