from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from service.taskflow.errors import SchemaError, TransportError
from service.taskflow.integrations.script_client import (
    ScriptClient,
    TableQuery,
    fallback_payload_ok,
    primary_payload_ok,
)

from conftest import make_table


def _resp(body=None, *, status=200, text=None, bad_json=False):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.text = text if text is not None else str(body)
    if bad_json:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = body
    return r


def _client(settings, *, get=None, post=None):
    session = MagicMock(spec=requests.Session)
    if get is not None:
        session.get.side_effect = get
    if post is not None:
        session.post.side_effect = post
    return ScriptClient(settings, session=session), session


def test_payload_validators():
    good = make_table([{"Task No": "TM-1"}], labels=["Task No"])
    assert primary_payload_ok(good)
    assert fallback_payload_ok(good)

    no_flag = dict(good)
    no_flag.pop("success")
    assert not primary_payload_ok(no_flag)
    assert fallback_payload_ok(no_flag)

    assert not primary_payload_ok({"success": True, "table": {}})
    assert not fallback_payload_ok({"table": {"cols": "x"}})
    assert not fallback_payload_ok(["not", "a", "dict"])


def test_primary_query_parameters(settings):
    client, session = _client(settings, get=[_resp(make_table([]))])

    fetched = client.fetch_table(TableQuery(sheet_name="Repair Task Assign", user_role="user", username="ravi"))

    assert fetched.source == "primary"
    assert not fetched.empty
    args, kwargs = session.get.call_args
    assert args[0] == settings.script_url
    assert kwargs["timeout"] == settings.http_timeout
    assert kwargs["params"] == {
        "sheetId": "sheet-123",
        "page": "1",
        "pageSize": "1000",
        "search": "",
        "department": "all",
        "status": "all",
        "location": "all",
        "userRole": "user",
        "username": "ravi",
        "sheet": "Repair Task Assign",
    }


def test_fallback_used_when_primary_shape_is_rejected(settings):
    legacy = make_table([{"Task No": "R-1"}], labels=["Task No"])
    legacy.pop("success")
    client, session = _client(settings, get=[_resp({"success": False, "error": "bad"}), _resp(legacy)])

    fetched = client.fetch_table(TableQuery(sheet_name="Repair Task Assign"))

    assert fetched.source == "fallback"
    assert fetched.payload is legacy
    assert session.get.call_count == 2
    assert session.get.call_args_list[1].kwargs["params"] == {"sheetId": "sheet-123", "sheet": "Repair Task Assign"}
    assert fetched.errors == ["primary: invalid table payload"]


def test_fallback_used_when_primary_transport_fails(settings):
    client, _ = _client(settings, get=[requests.ConnectionError("down"), _resp(make_table([]))])

    fetched = client.fetch_table(TableQuery(sheet_name="Maitenance Task Assign"))

    assert fetched.source == "fallback"
    assert "primary: query failed" in fetched.errors[0]


def test_both_strategies_failing_is_empty_not_raised(settings):
    client, _ = _client(settings, get=[_resp(None, status=500, text="oops"), _resp(None, bad_json=True, text="<html>")])

    fetched = client.fetch_table(TableQuery(sheet_name="Repair Task Assign"))

    assert fetched.empty
    assert fetched.source == "none"
    assert len(fetched.errors) == 2


def test_post_update_is_form_encoded(settings):
    client, session = _client(settings, post=[_resp({"success": True})])

    out = client.post_update({"taskNo": "TM-1", "Task Status": "Yes"})

    assert out == {"success": True}
    kwargs = session.post.call_args.kwargs
    assert kwargs["data"]["action"] == "update"
    assert kwargs["data"]["taskNo"] == "TM-1"
    assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"


def test_upload_file_sets_action(settings):
    client, session = _client(settings, post=[_resp({"success": True, "fileUrl": "u"})])

    client.upload_file({"fileName": "a.png"})

    assert session.post.call_args.kwargs["data"]["action"] == "uploadFile"


def test_post_errors(settings):
    client, _ = _client(settings, post=[requests.Timeout("slow")])
    with pytest.raises(TransportError):
        client.post_update({})

    client, _ = _client(settings, post=[_resp(None, bad_json=True)])
    with pytest.raises(SchemaError):
        client.post_update({})

    client, _ = _client(settings, post=[_resp(["x"])])
    with pytest.raises(SchemaError):
        client.post_update({})

    client, _ = _client(settings, post=[_resp({}, status=502)])
    with pytest.raises(TransportError):
        client.post_update({})


def test_non_2xx_with_error_body_is_returned(settings):
    client, _ = _client(settings, post=[_resp({"success": False, "error": "Task not found"}, status=400)])

    assert client.post_update({}) == {"success": False, "error": "Task not found"}


def test_rejected_primary_and_shapeless_fallback_is_empty(settings):
    client, session = _client(settings, get=[_resp({"success": False}), _resp({"rows": []})])

    fetched = client.fetch_table(TableQuery(sheet_name="Maitenance Task Assign"))

    assert session.get.call_count == 2
    assert fetched.empty
    assert fetched.errors == ["primary: invalid table payload", "fallback: invalid table payload"]
