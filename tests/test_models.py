import base64

import pytest
from pydantic import ValidationError

from mail_relay.models import AttachmentPayload, SendParams, SendRequest, SendResponse


def test_recipients_accept_string_and_list():
    req = SendRequest(to="a@example.com, b@example.com", cc="c@example.com", subject="s", text="t")
    assert [str(a) for a in req.to] == ["a@example.com", "b@example.com"]
    assert [str(a) for a in req.cc] == ["c@example.com"]
    assert req.bcc is None


def test_empty_recipient_string_is_rejected():
    with pytest.raises(ValidationError):
        SendRequest(to=" , ", subject="s", text="t")


def test_body_is_required():
    with pytest.raises(ValidationError, match="text' or 'html"):
        SendRequest(to="a@example.com", subject="s")
    assert SendRequest(to="a@example.com", subject="s", html="<p>x</p>").html == "<p>x</p>"


def test_subject_length_limits():
    with pytest.raises(ValidationError):
        SendRequest(to="a@example.com", subject="", text="t")
    with pytest.raises(ValidationError):
        SendRequest(to="a@example.com", subject="x" * 999, text="t")


def test_attachment_content_must_be_base64():
    att = AttachmentPayload(filename="a.bin", content=base64.b64encode(b"\x00\x01").decode())
    assert att.decoded() == b"\x00\x01"
    with pytest.raises(ValidationError):
        AttachmentPayload(filename="a.bin", content="not base64!")


def test_send_params_from_request():
    req = SendRequest(
        to=["a@example.com"],
        bcc="b@example.com",
        subject="s",
        text="t",
        attachments=[{"filename": "x.txt", "content": base64.b64encode(b"x").decode(), "contentType": "text/plain"}],
    )
    params = SendParams.from_request(req)

    assert params.recipients == ["a@example.com", "b@example.com"]
    assert params.cc == []
    assert params.from_addr is None
    assert params.attachments[0].content == b"x"
    assert params.attachments[0].content_type == "text/plain"


def test_send_response_uses_camel_case_alias():
    resp = SendResponse(message_id="<id@x>", accepted=["a@example.com"])
    assert resp.model_dump(by_alias=True) == {"messageId": "<id@x>", "accepted": ["a@example.com"], "rejected": []}
