import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import base64
import hashlib
import io

from lxml import etree

from xop_service import ExecutionResult, Message, MessageContext, XopConfig, XopHandler, transform
from xop_service.multipart import MultipartInput
from messages import (
    MSG1,
    MSG1_ATTACHMENT,
    MSG1_CONTENT_TYPE,
    MSG1_XML,
    MSG2_CONTENT_TYPE,
    XOP_NS,
    build_multipart,
    msg2,
)


def make_context(content=MSG1, content_type=MSG1_CONTENT_TYPE):
    message = Message(content, {"mime-version": "1.0", "content-type": content_type})
    return MessageContext(message), message


def sha256(data):
    return hashlib.sha256(data).hexdigest()


def test_parse_message():
    ctx, message = make_context()
    callout = XopHandler({"source": "message", "debug": "true"})
    result = callout.execute(ctx)
    assert result == ExecutionResult.SUCCESS
    assert ctx.get_variable("xop_error") is None
    assert ctx.get_variable("xop_stacktrace") is None
    assert ctx.get_variable("xop_action") == "edit_1"
    assert message.content
    assert message.content != MSG1


def test_edit_1_strips_token_and_keeps_attachment():
    ctx, message = make_context()
    assert XopHandler({}).execute(ctx) == ExecutionResult.SUCCESS

    transformed = ctx.get_variable("xop_transformed")
    assert "UsernameToken" not in transformed

    mpi = MultipartInput(io.BytesIO(message.content), message.get_header("content-type"))
    part1 = mpi.next_part()
    assert part1.get_header_names() == ["Content-Type", "Content-Transfer-Encoding", "Content-ID"]
    assert part1.content_id == "<rootpart@soapui.org>"
    assert part1.read().decode("utf-8") == transformed

    part2 = mpi.next_part()
    assert part2.content_type == "application/zip"
    assert part2.content_id == "<0b83cd6b-af15-45d2-bbda-23895de2a73d>"
    assert sha256(part2.read()) == sha256(MSG1_ATTACHMENT)
    assert mpi.next_part() is None
    assert message.get_header("content-type") == MSG1_CONTENT_TYPE


def test_with_bogus_action():
    ctx, message = make_context()
    callout = XopHandler({"source": "message", "action": "bogus", "debug": "true"})
    assert callout.execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "specify a valid action."
    assert ctx.get_variable("xop_stacktrace") is None
    assert message.content == MSG1


def test_bogus_action_regardless_of_content():
    ctx, _ = make_context(b"garbage", "text/plain")
    assert XopHandler({"action": "bogus"}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "specify a valid action."


def test_with_extract_action():
    ctx, message = make_context()
    callout = XopHandler({"source": "message", "action": "extract_soap", "debug": "true"})
    assert callout.execute(ctx) == ExecutionResult.SUCCESS
    assert ctx.get_variable("xop_error") is None
    assert ctx.get_variable("xop_stacktrace") is None

    xml = ctx.get_variable("xop_extracted_xml")
    assert xml == MSG1_XML
    assert etree.fromstring(xml.encode("utf-8")) is not None
    assert message.content == MSG1


def test_extract_ignores_extra_parts():
    body = build_multipart(
        [([("Content-Type", "text/xml")], b"<a/>")] + [([("Content-Type", "image/bmp")], b"BM")] * 3
    )
    ctx, _ = make_context(body, "multipart/related; boundary=MIME_boundary")
    assert XopHandler({"action": "EXTRACT_SOAP"}).execute(ctx) == ExecutionResult.SUCCESS
    assert ctx.get_variable("xop_extracted_xml") == "<a/>"


def test_wrong_part1_content_type_aborts_without_mutation():
    body = build_multipart(
        [
            ([("Content-Type", "image/bmp")], b"BM..."),
            ([("Content-Type", "application/zip"), ("Content-ID", "<a>")], b"PK"),
        ]
    )
    for action in ("edit_1", "transform_to_embedded"):
        ctx, message = make_context(body, "multipart/related; boundary=MIME_boundary")
        assert XopHandler({"action": action}).execute(ctx) == ExecutionResult.ABORT
        assert ctx.get_variable("xop_error") == "unexpected content-type for part #1 (image/bmp)"
        assert message.content == body
        assert message.get_header("content-type") == "multipart/related; boundary=MIME_boundary"


def test_wrong_attachment_content_type():
    ctx, message = make_context(msg2("image/bmp"), MSG2_CONTENT_TYPE)
    callout = XopHandler({"source": "message", "debug": "true"})
    assert callout.execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "unexpected content-type for part #2 (image/bmp)"
    assert ctx.get_variable("xop_stacktrace") is None
    assert message.content == msg2("image/bmp")


def test_attachment_allowlist_override():
    ctx, _ = make_context(msg2("image/bmp"), MSG2_CONTENT_TYPE)
    callout = XopHandler({"part2-ctypes": "image/bmp"})
    assert callout.execute(ctx) == ExecutionResult.SUCCESS


def test_edit_1_part_count():
    one_part = build_multipart([([("Content-Type", "text/xml")], b"<a/>")])
    ctx, _ = make_context(one_part, "multipart/related; boundary=MIME_boundary")
    assert XopHandler({}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "missing part #2"

    three_parts = build_multipart(
        [([("Content-Type", "text/xml")], b"<a/>")]
        + [([("Content-Type", "application/zip")], b"PK")] * 2
    )
    ctx, message = make_context(three_parts, "multipart/related; boundary=MIME_boundary")
    assert XopHandler({}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "unexpected part #3"
    assert message.content == three_parts


def test_missing_boundary():
    ctx, _ = make_context(MSG1, "multipart/related; type=text/xml")
    assert XopHandler({}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "no boundary found"


def test_source_message_is_null():
    ctx, _ = make_context()
    assert XopHandler({"source": "{which:other}"}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "source message is null."


def test_named_source_message():
    ctx, message = make_context()
    ctx.remove_variable("message")
    ctx.set_variable("request", message)
    assert XopHandler({"source": "request", "action": "extract_soap"}).execute(ctx) == ExecutionResult.SUCCESS


def test_transform_to_embedded():
    image = os.urandom(4096)
    ctx, message = make_context(msg2(image=image), MSG2_CONTENT_TYPE)
    callout = XopHandler({"action": "transform_to_embedded"})
    assert callout.execute(ctx) == ExecutionResult.SUCCESS
    assert ctx.get_variable("xop_action") == "transform_to_embedded"
    assert message.get_header("content-type") == "text/xml"

    root = etree.fromstring(message.content)
    assert root.xpath("//xop:Include", namespaces={"xop": XOP_NS}) == []
    text = root.xpath("//image/text()")[0]
    assert sha256(base64.b64decode(text)) == sha256(image)


def test_transform_to_embedded_with_unbound_include():
    xml = (
        f"<r xmlns:xop='{XOP_NS}'><a><xop:Include href='cid:a'/></a>"
        "<b><xop:Include href='cid:b'/></b></r>"
    )
    body = build_multipart(
        [
            ([("Content-Type", "text/xml")], xml.encode("utf-8")),
            ([("Content-Type", "application/zip"), ("Content-ID", "<a>")], b"PK"),
        ]
    )
    ctx, message = make_context(body, "multipart/related; boundary=MIME_boundary")
    assert XopHandler({"action": "transform_to_embedded"}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "no attachment found for xop:Include cid:b"
    assert message.content == body

    single = build_multipart([([("Content-Type", "text/xml")], xml.encode("utf-8"))])
    ctx, message = make_context(single, "multipart/related; boundary=MIME_boundary")
    assert XopHandler({"action": "transform_to_embedded"}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error") == "no attachment found for xop:Include cid:a"
    assert message.content == single


def test_transform_to_embedded_original_sample():
    ctx, message = make_context()
    assert XopHandler({"action": "TRANSFORM_TO_EMBEDDED"}).execute(ctx) == ExecutionResult.SUCCESS
    root = etree.fromstring(message.content)
    contents = root.xpath("//ucm:Contents", namespaces={"ucm": "http://www.oracle.com/UCM"})[0]
    assert len(contents) == 0
    assert base64.b64decode(contents.text) == MSG1_ATTACHMENT
    # the UsernameToken is left alone by this action
    assert b"UsernameToken" in message.content


def test_unexpected_error_carries_stacktrace_when_debugging():
    body = build_multipart(
        [([("Content-Type", "text/xml")], b"<not-closed>"), ([("Content-Type", "application/zip")], b"PK")]
    )
    ctx, message = make_context(body, "multipart/related; boundary=MIME_boundary")
    assert XopHandler({"debug": "true"}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_error")
    assert ctx.get_variable("xop_exception").startswith("XMLSyntaxError")
    assert "Traceback" in ctx.get_variable("xop_stacktrace")
    assert message.content == body

    ctx, _ = make_context(body, "multipart/related; boundary=MIME_boundary")
    assert XopHandler({}).execute(ctx) == ExecutionResult.ABORT
    assert ctx.get_variable("xop_stacktrace") is None


def test_transform_is_pure():
    message = Message(MSG1, {"content-type": MSG1_CONTENT_TYPE})
    outcome = transform(XopConfig.from_properties({"action": "transform_to_embedded"}), message)
    assert outcome.succeeded
    assert outcome.message.get_header("content-type") == "text/xml"
    assert message.content == MSG1
    assert message.get_header("content-type") == MSG1_CONTENT_TYPE
