"""Webhook tests using Flask's test client against a real store file."""

import json
import time
from urllib.parse import urlencode

import pytest
from slack_sdk.signature import SignatureVerifier

from app import create_app
from config import Config
from store import Record, StorageError

TOKEN = "s3cret-token"


# --- gates ---

def test_ssl_check_passthrough(client):
    resp = client.get("/?ssl_check=1")
    assert resp.status_code == 200
    assert resp.data == b""


def test_ssl_check_ignores_token(client):
    resp = client.get("/?ssl_check=1&token=wrong")
    assert resp.status_code == 200
    assert resp.data == b""


def test_plain_get_not_allowed(client):
    resp = client.get("/")
    assert resp.status_code == 405
    assert resp.data == b"Method Not Allowed\n"


@pytest.mark.parametrize("method", ["put", "patch", "delete"])
def test_other_verbs_not_allowed(client, method):
    resp = getattr(client, method)("/", data={"token": TOKEN, "text": "list"})
    assert resp.status_code == 405


def test_wrong_token_rejected_without_store_access(post_command, file_store):
    file_store.add("alice")

    resp = post_command("del 1", token="nope")
    assert resp.status_code == 400
    assert resp.data == b"Bad Request\n"
    assert file_store.list() == [Record(1, "alice")]


class RecordingStore:
    """Records every call made on it."""

    backend = "recording"

    def __init__(self):
        self.calls = []

    def add(self, name):
        self.calls.append(("add", name))
        return 1

    def delete(self, id):
        self.calls.append(("delete", id))
        return ""

    def list(self):
        self.calls.append(("list",))
        return []


@pytest.mark.parametrize("text", ["list", "add alice", "del 1", "help"])
def test_wrong_token_never_touches_store(config, text):
    store = RecordingStore()
    app = create_app(config, store)
    app.config["TESTING"] = True
    with app.test_client() as c:
        resp = c.post("/", data={"token": "nope", "text": text})
    assert resp.status_code == 400
    assert store.calls == []


def test_non_post_never_touches_store(config):
    store = RecordingStore()
    app = create_app(config, store)
    with app.test_client() as c:
        resp = c.put("/", data={"token": TOKEN, "text": "list"})
    assert resp.status_code == 405
    assert store.calls == []


def test_missing_token_rejected(client):
    resp = client.post("/", data={"text": "help"})
    assert resp.status_code == 400


def test_any_path_serves_webhook(client):
    resp = client.post("/slack/icecream", data={"token": TOKEN, "text": "help"})
    assert resp.status_code == 200
    assert resp.get_json()["response_type"] == "ephemeral"


# --- commands ---

def test_help(post_command):
    resp = post_command("help")
    assert resp.status_code == 200
    assert resp.headers["Content-Type"] == "application/json; charset=utf-8"
    body = resp.get_json()
    assert body["response_type"] == "ephemeral"
    assert "/icecream add <username>" in body["text"]


def test_round_trip(post_command, file_store):
    resp = post_command("add alice")
    assert resp.get_json() == {"response_type": "in_channel", "text": "Added alice to the queue."}

    resp = post_command("list")
    assert resp.get_json() == {"response_type": "in_channel", "text": "1. alice"}

    resp = post_command("del 1")
    assert resp.get_json() == {"response_type": "in_channel", "text": "Deleted alice (1) from the queue."}

    resp = post_command("list")
    assert resp.get_json() == {
        "response_type": "in_channel",
        "text": "The icecream backlog is empty. Tread lightly.",
    }


def test_whitespace_is_trimmed(post_command, file_store):
    post_command("  add bob  ")
    assert file_store.list() == [Record(1, "bob")]


def test_list_on_fresh_store_is_500(post_command):
    resp = post_command("list")
    assert resp.status_code == 500
    assert resp.data == b"Internal Server Error\n"


def test_bad_delete_id_is_500_and_no_mutation(post_command, file_store):
    file_store.add("alice")

    resp = post_command("del abc")
    assert resp.status_code == 500
    assert file_store.list() == [Record(1, "alice")]


def test_malformed_store_file_is_plain_500(post_command, db_path):
    with open(db_path, "w", encoding="utf-8") as f:
        json.dump({"buckets": {"icecream": {}}}, f)

    resp = post_command("add bob")
    assert resp.status_code == 500
    assert resp.data == b"Internal Server Error\n"


def test_unknown_command_is_empty_200(post_command):
    resp = post_command("dance")
    assert resp.status_code == 200
    assert resp.data == b""


# --- health ---

def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "running", "store": "file"}


# --- request signatures ---

SIGNING_SECRET = "8f742231b10e8888abcd99yyyzzz85a5"


@pytest.fixture
def signed_client(db_path, file_store):
    config = Config(token=TOKEN, db_path=db_path, signing_secret=SIGNING_SECRET)
    app = create_app(config, file_store)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def _signed_headers(body, secret=SIGNING_SECRET, timestamp=None):
    timestamp = str(int(timestamp or time.time()))
    signature = SignatureVerifier(secret).generate_signature(timestamp=timestamp, body=body)
    return {
        "X-Slack-Request-Timestamp": timestamp,
        "X-Slack-Signature": signature,
        "Content-Type": "application/x-www-form-urlencoded",
    }


def test_valid_signature_accepted(signed_client):
    body = urlencode({"token": TOKEN, "text": "add alice"})
    resp = signed_client.post("/", data=body, headers=_signed_headers(body))
    assert resp.status_code == 200
    assert resp.get_json()["text"] == "Added alice to the queue."


def test_unsigned_request_rejected(signed_client, file_store):
    resp = signed_client.post("/", data={"token": TOKEN, "text": "add alice"})
    assert resp.status_code == 400
    with pytest.raises(StorageError):
        file_store.list()


def test_wrong_secret_rejected(signed_client):
    body = urlencode({"token": TOKEN, "text": "help"})
    resp = signed_client.post("/", data=body, headers=_signed_headers(body, secret="other"))
    assert resp.status_code == 400


def test_stale_signature_rejected(signed_client):
    body = urlencode({"token": TOKEN, "text": "help"})
    headers = _signed_headers(body, timestamp=time.time() - 3600)
    resp = signed_client.post("/", data=body, headers=headers)
    assert resp.status_code == 400
