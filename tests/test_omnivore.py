import json

import pytest
import responses

from wayback_publish.omnivore import (
    DEFAULT_API_ENDPOINT,
    Omnivore,
    OmnivoreError,
    setup_module,
)
from wayback_publish.publish import COLLECTS, Module

SAVE_URL_RESP = (
    '{"data":{"saveUrl":{"url":"https://omnivore.app/repo/links/'
    'cff02ab5-c36e-4efe-a976-2de32dc1685d","clientRequestId":'
    '"cff02ab5-c36e-4efe-a976-2de32dc1685d"}}}'
)


def test_publish_success_sends_expected_request():
    seen = {}

    def callback(request):
        seen["headers"] = dict(request.headers)
        seen["body"] = json.loads(request.body)
        return 200, {"Content-Type": "application/json"}, SAVE_URL_RESP

    with responses.RequestsMock() as rsps:
        rsps.add_callback(responses.POST, DEFAULT_API_ENDPOINT, callback=callback)
        client = Omnivore("token")
        client.publish({}, COLLECTS)

    assert client.apikey == "token"
    assert seen["headers"]["Authorization"] == client.apikey
    assert seen["headers"]["Content-Type"] == "application/json"
    variables = seen["body"]["variables"]["input"]
    assert variables["url"] == "https://example.com/"
    assert variables["source"] == "api"
    assert "saveUrl" in seen["body"]["query"]


def test_publish_custom_endpoint():
    endpoint = "http://localhost:9999/api/graphql"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, endpoint, body=SAVE_URL_RESP, status=200)
        client = Omnivore("token", endpoint=endpoint)
        client.publish(None, COLLECTS)
        assert len(rsps.calls) == 1
        request = rsps.calls[0].request
        assert request.url == endpoint
        assert request.headers["Authorization"] == client.apikey


def test_publish_empty_collects():
    with pytest.raises(OmnivoreError, match="collects empty"):
        Omnivore("token").publish(None, [])


def test_publish_error_message_from_response():
    body = json.dumps({"errors": [{"message": "bad url"}]})
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, DEFAULT_API_ENDPOINT, body=body, status=400)
        with pytest.raises(OmnivoreError) as info:
            Omnivore("token").publish(None, COLLECTS)
    assert str(info.value) == "omnivore: failed to save URL: status=400 bad url"


def test_publish_error_with_plain_body():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, DEFAULT_API_ENDPOINT, body="oops", status=500)
        with pytest.raises(OmnivoreError) as info:
            Omnivore("token").publish(None, COLLECTS)
    assert str(info.value) == "omnivore: failed to save URL: status=500 oops"


def test_publish_unparsable_success_response():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, DEFAULT_API_ENDPOINT, body="not json", status=200)
        with pytest.raises(OmnivoreError, match="failed to parse response"):
            Omnivore("token").publish(None, COLLECTS)


def test_missing_apikey():
    with pytest.raises(ValueError):
        Omnivore("")


def test_setup_module():
    assert setup_module("") is None
    module = setup_module("token")
    assert isinstance(module, Module)
    assert isinstance(module.publisher, Omnivore)
    assert module.publisher.apikey == "token"