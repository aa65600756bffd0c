from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from service.taskflow.errors import SchemaError
from service.taskflow.pipeline.nodes.writeback import (
    GENERIC_ERROR,
    GENERIC_FAILURE,
    build_update_payload,
    completion_date,
    submit_update,
)
from service.taskflow.session.forms import SubmissionEntry
from service.taskflow.tools.upload_tool import Attachment


def test_completed_task_gets_actual_date(settings, mapping):
    entry = SubmissionEntry(task_no="TM-1", status="Yes", remarks="greased", cost="120")

    payload = build_update_payload(settings, mapping, "TM-1", entry, today="2024-03-10")

    assert payload == {
        "sheetId": "sheet-123",
        "sheetName": "Maitenance Task Assign",
        "action": "update",
        "taskNo": "TM-1",
        "Task Status": "Yes",
        "Remarks": "greased",
        "Maintenance Cost": "120",
        "Sound Status": "",
        "Temperature Status": "",
        "Actual Date": "2024-03-10",
    }


def test_not_done_outcome_leaves_actual_date_alone(settings, mapping):
    entry = SubmissionEntry(task_no="R-7", status="No", remarks="parts pending", cost="40")

    payload = build_update_payload(settings, mapping, "R-7", entry, today="2024-03-10")

    assert payload["sheetName"] == "Repair Task Assign"
    assert payload["Repair Cost"] == "40"
    assert "Maintenance Cost" not in payload
    assert "Actual Date" not in payload


def test_image_fields_only_with_uploaded_url(settings, mapping):
    att = Attachment.from_bytes("valve.JPG", b"x")
    entry = SubmissionEntry(task_no="TM-2", status="Yes", attachment=att)

    without = build_update_payload(settings, mapping, "TM-2", entry, today="2024-03-10", attachment=att)
    assert "Image Link" not in without

    with_url = build_update_payload(
        settings, mapping, "TM-2", entry, today="2024-03-10", upload_url="https://drive/x", attachment=att,
    )
    assert with_url["Image Link"] == "https://drive/x"
    assert with_url["File Name"] == "valve.JPG"
    assert with_url["File Type"] == "jpg"


def test_completion_date_uses_configured_timezone(settings):
    late_utc = datetime(2024, 3, 10, 22, 30, tzinfo=timezone.utc)

    assert completion_date(settings, now=late_utc) == "2024-03-10"
    kolkata = replace(settings, completion_timezone="Asia/Kolkata")
    assert completion_date(kolkata, now=late_utc) == "2024-03-11"


def test_submit_update_outcomes(fake_client):
    assert submit_update(fake_client, {"taskNo": "TM-1"}).ok

    fake_client.post_update.return_value = {"success": False, "error": "Row locked"}
    ack = submit_update(fake_client, {"taskNo": "TM-1"})
    assert not ack.ok and ack.error == "Row locked"

    fake_client.post_update.return_value = {"success": False}
    assert submit_update(fake_client, {"taskNo": "TM-1"}).error == GENERIC_FAILURE

    fake_client.post_update.side_effect = SchemaError("html page")
    assert submit_update(fake_client, {"taskNo": "TM-1"}).error == GENERIC_ERROR
