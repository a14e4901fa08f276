import json
import logging
import sys
from pathlib import Path

import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


logger = logging.getLogger("ha-addons-tests")


def pytest_runtest_setup(item):
    logger.info("Running %s", item.nodeid)


class DummyMqtt:
    """Records what would have gone to the broker."""

    addon_id = "test"

    def __init__(self):
        self.published = []
        self.entities = []
        self.callbacks = {}
        self.removed = []

    def state_topic(self, component, object_id):
        return f"{self.addon_id}/{component}/{object_id}/state"

    def attributes_topic(self, component, object_id):
        return f"{self.addon_id}/{component}/{object_id}/attributes"

    def publish_raw(self, topic, payload, retain=True):
        self.published.append((topic, payload))
        return True

    def publish_sensor(self, config):
        self.entities.append(("sensor", config))
        return True

    def publish_binary_sensor(self, config):
        self.entities.append(("binary_sensor", config))
        return True

    def publish_select(self, config, command_callback=None):
        self.entities.append(("select", config))
        self.callbacks[config.object_id] = command_callback
        return True

    def publish_button(self, config, press_callback=None):
        self.entities.append(("button", config))
        self.callbacks[config.object_id] = press_callback
        return True

    def remove_entity(self, component, object_id):
        self.removed.append((component, object_id))
        return True

    def update_state(self, component, object_id, state, attributes=None):
        self.publish_raw(self.state_topic(component, object_id), state)
        if attributes is not None:
            self.publish_raw(self.attributes_topic(component, object_id), attributes)
        return True

    def payloads(self, topic):
        return [payload for published_topic, payload in self.published if published_topic == topic]

    def topics(self):
        return [topic for topic, _ in self.published]


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None):
        self.status_code = status_code
        self._json = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.content = text.encode()

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            return json.loads(self.text)
        return self._json

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error")


@pytest.fixture
def mqtt():
    return DummyMqtt()


@pytest.fixture
def response():
    return FakeResponse
