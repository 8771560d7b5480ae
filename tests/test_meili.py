import json
import re
from urllib.parse import urlsplit

import pytest
import responses

from wayback_publish.meili import (
    DEFAULT_INDEXING,
    Meili,
    MeiliError,
    group_by_src,
    setup_module,
)
from wayback_publish.publish import (
    COLLECTS,
    SLOT_IA,
    Collect,
)

ENDPOINT = "http://meili.test"
API_KEY = "token"

RESP_VERSION = {
    "commitSha": "b46889b5f0f2f8b91438a08a358ba8f05fc09fc1",
    "commitDate": "2019-11-15T09:51:54.278247+00:00",
    "pkgVersion": "0.1.1",
}
RESP_GET_INDEX = {
    "uid": DEFAULT_INDEXING,
    "name": DEFAULT_INDEXING,
    "createdAt": "2022-02-10T07:45:15.628261Z",
    "updatedAt": "2022-02-21T15:28:43.496574Z",
    "primaryKey": "id",
}
RESP_INVALID = {
    "message": f"Index {DEFAULT_INDEXING} not found.",
    "code": "index_not_found",
    "type": "invalid_request",
}
RESP_CREATE_INDEX = {
    "uid": 0,
    "indexUid": DEFAULT_INDEXING,
    "status": "enqueued",
    "type": "indexCreation",
    "enqueuedAt": "2021-08-12T10:00:00.000000Z",
}
RESP_PUSH_DOCUMENT = {
    "uid": 1,
    "indexUid": DEFAULT_INDEXING,
    "status": "enqueued",
    "type": "documentAddition",
    "enqueuedAt": "2021-08-11T09:25:53.000000Z",
}

INVALID_SAMPLE = [
    Collect(arc=SLOT_IA, dst="invalid URL", src="https://example.com/", ext=SLOT_IA)
]


def _reply(status, body):
    return status, {"Content-Type": "application/json"}, json.dumps(body)


def _without_id(doc):
    return {key: value for key, value in doc.items() if key != "id"}


def make_handler(version=RESP_VERSION, index_missing=False):
    def handler(request):
        path = urlsplit(request.url).path
        method = request.method
        if API_KEY not in request.headers.get("Authorization", ""):
            return _reply(401, RESP_INVALID)
        if path == "/version":
            return _reply(200, version)
        if method == "GET" and path == f"/indexes/{DEFAULT_INDEXING}":
            if index_missing:
                return _reply(404, RESP_INVALID)
            return _reply(200, RESP_GET_INDEX)
        if method == "POST" and path == "/indexes":
            return _reply(202, RESP_CREATE_INDEX)
        if (
            method in ("POST", "PUT")
            and path == f"/indexes/{DEFAULT_INDEXING}/settings/sortable-attributes"
        ):
            return _reply(202, RESP_CREATE_INDEX)
        if method == "POST" and path == f"/indexes/{DEFAULT_INDEXING}/documents":
            docs = json.loads(request.body)
            if len(docs) != 1:
                return _reply(400, RESP_INVALID)
            return _reply(202, RESP_PUSH_DOCUMENT)
        return _reply(400, RESP_INVALID)

    return handler


def install(rsps, handler):
    pattern = re.compile(re.escape(ENDPOINT) + r"/.*")
    for method in ("GET", "POST", "PUT"):
        rsps.add_callback(method, pattern, callback=handler)


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture
def server(rsps):
    install(rsps, make_handler())
    return rsps


@pytest.fixture
def meili():
    return Meili(ENDPOINT, API_KEY, DEFAULT_INDEXING)


@pytest.mark.parametrize("indexing, expected", [("", DEFAULT_INDEXING), ("foo", "foo")])
def test_new_meili_indexing(indexing, expected):
    assert Meili(ENDPOINT, API_KEY, indexing).indexing == expected


def test_setup(server, meili):
    meili.setup()
    assert meili.version == "0.1.1"
    sortable = [c for c in server.calls if c.request.url.endswith("sortable-attributes")]
    assert len(sortable) == 1
    assert sortable[0].request.method == "POST"
    assert json.loads(sortable[0].request.body) == ["id"]


def test_setup_creates_missing_index(rsps, meili):
    install(rsps, make_handler(index_missing=True))
    meili.setup()
    assert meili.version == "0.1.1"
    creates = [
        c
        for c in rsps.calls
        if c.request.method == "POST" and urlsplit(c.request.url).path == "/indexes"
    ]
    assert len(creates) == 1
    assert json.loads(creates[0].request.body) == {
        "uid": DEFAULT_INDEXING,
        "primaryKey": "id",
    }


def test_exist_index(server, meili):
    meili.exist_index()
    call = server.calls[0]
    assert urlsplit(call.request.url).path == f"/indexes/{meili.indexing}"
    assert call.request.headers["Authorization"] == "Bearer token"
    assert call.request.headers["User-Agent"] == "WaybackArchiver/1.0"


def test_exist_index_not_found(rsps, meili):
    install(rsps, make_handler(index_missing=True))
    with pytest.raises(MeiliError, match="indexing capsules not found"):
        meili.exist_index()


def test_exist_index_uid_mismatch(server):
    other = Meili(ENDPOINT, API_KEY, "other")
    with pytest.raises(MeiliError, match="request failed: 400"):
        other.exist_index()


def test_exist_index_unauthorized(server):
    anonymous = Meili(ENDPOINT, "", DEFAULT_INDEXING)
    with pytest.raises(MeiliError, match="get index: request failed: 401"):
        anonymous.exist_index()


def test_create_index(server, meili):
    meili.create_index()
    request = server.calls[0].request
    assert request.method == "POST"
    assert json.loads(request.body) == {"uid": meili.indexing, "primaryKey": "id"}


def test_create_index_mismatch(rsps):
    pattern = re.compile(re.escape(ENDPOINT) + r"/.*")
    rsps.add(responses.POST, pattern, json=dict(RESP_CREATE_INDEX, indexUid="x"), status=202)
    with pytest.raises(MeiliError, match="indexing capsules not match"):
        Meili(ENDPOINT, API_KEY).create_index()


def test_version(server, meili):
    assert meili.get_version() == "0.1.1"
    assert meili.version == "0.1.1"


def test_sortable_uses_put_for_new_servers(rsps, meili):
    install(rsps, make_handler(version={"pkgVersion": "0.28.1"}))
    assert meili.get_version() == "0.28.1"
    meili.sortable()
    assert rsps.calls[-1].request.method == "PUT"


def test_sortable_invalid_version(meili):
    meili.version = "not-a-version"
    with pytest.raises(MeiliError, match="invalid version: not-a-version"):
        meili.sortable()


def test_publish_empty(meili):
    with pytest.raises(MeiliError) as excinfo:
        meili.publish(None, [])
    assert str(excinfo.value) == "push documents failed: cols empty"


def test_publish_sample(server, meili):
    meili.publish(None, list(COLLECTS))
    docs = json.loads(server.calls[-1].request.body)
    assert len(docs) == 1
    doc = docs[0]
    assert doc["source"] == "https://example.com/"
    assert doc["ia"] == "https://web.archive.org/web/20211000000001/https://example.com/"
    assert doc["is"] == "http://archive.today/abcdE"
    assert doc["ip"] == "https://ipfs.io/ipfs/QmTbDmpvQ3cPZG6TA5tnar4ZG6q9JMBYVmX2n3wypMQMtr"
    assert doc["ph"] == "http://telegra.ph/title-01-01"
    expected = meili.documents(list(COLLECTS))
    assert [_without_id(d) for d in expected] == [_without_id(doc)]


def test_publish_invalid_sample(server, meili):
    meili.publish(None, INVALID_SAMPLE)
    docs = json.loads(server.calls[-1].request.body)
    assert docs[0]["ia"] == "invalid URL"
    assert docs[0]["is"] == ""
    expected = meili.documents(INVALID_SAMPLE)
    assert [_without_id(d) for d in expected] == [_without_id(docs[0])]


def test_publish_rejected(server, meili):
    cols = list(COLLECTS) + [Collect(arc=SLOT_IA, dst="https://a/", src="https://example.org/")]
    with pytest.raises(MeiliError, match="push document: unexpected status: 400"):
        meili.publish(None, cols)


def test_documents_grouping(meili):
    cols = [
        Collect(arc=SLOT_IA, dst="https://a/", src="https://one.example.com/"),
        Collect(arc=SLOT_IA, dst="https://b/", src="https://two.example.com/"),
    ]
    docs = meili.documents(cols)
    assert [d["source"] for d in docs] == [
        "https://one.example.com/",
        "https://two.example.com/",
    ]
    assert docs[0]["id"] != docs[1]["id"]
    assert docs[0]["ia"] == "https://a/"


def test_documents_broken_uri_is_blank(meili):
    cols = [Collect(arc=SLOT_IA, dst="http://[broken", src="https://example.com/")]
    assert meili.documents(cols)[0]["ia"] == ""


def test_group_by_src():
    groups = group_by_src(list(COLLECTS) + [Collect(src="https://example.org/")])
    assert list(groups) == ["https://example.com/", "https://example.org/"]
    assert len(groups["https://example.com/"]) == 4


def test_setup_module_disabled():
    assert setup_module("") is None


def test_setup_module_enabled(server):
    module = setup_module(ENDPOINT, API_KEY, DEFAULT_INDEXING)
    assert isinstance(module.publisher, Meili)
    assert module.publisher.version == "0.1.1"


def test_setup_module_failure(server):
    assert setup_module(ENDPOINT, "", DEFAULT_INDEXING) is None