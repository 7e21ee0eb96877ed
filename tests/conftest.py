import json
import os

import pytest

EVENTS_DIR = os.path.join(os.path.dirname(__file__), "events")


def load_event(name):
    with open(os.path.join(EVENTS_DIR, name), "r", encoding="utf-8") as f:
        return json.load(f)


def sns_event(message):
    """Wrap ``message`` (dict or raw string) in a minimal SNS envelope."""
    if isinstance(message, dict):
        message = json.dumps(message)
    return {"Records": [{"Sns": {"Message": message}}]}


@pytest.fixture
def verification_event():
    return load_event("sns_verification_event.json")
