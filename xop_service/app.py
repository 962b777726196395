"""
XOP editor HTTP service
- POST /xop: run EDIT_1 / EXTRACT_SOAP / TRANSFORM_TO_EMBEDDED on a multipart/related body
- GET /example: sample request
Query parameters are the handler properties (action, part1-ctypes, part2-ctypes, debug).
"""

import logging
import xml.etree.ElementTree as ET

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .config import XopAction
from .handler import EMBEDDED_CONTENT_TYPE, XopHandler
from .message import Message, MessageContext

# ----------------------------
# Logging setup
# ----------------------------
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("xop")

SOAP12_ENV_NS = "http://www.w3.org/2003/05/soap-envelope"

app = FastAPI(title="XOP Editor", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_soap_fault(code: str, reason: str, detail: str = None) -> str:
    """
    Build a SOAP 1.2 Fault message.
    """
    fault = ET.Element("{%s}Envelope" % SOAP12_ENV_NS)
    body = ET.SubElement(fault, "{%s}Body" % SOAP12_ENV_NS)
    fault_el = ET.SubElement(body, "{%s}Fault" % SOAP12_ENV_NS)

    code_el = ET.SubElement(fault_el, "Code")
    ET.SubElement(code_el, "Value").text = f"s:{code}"

    reason_el = ET.SubElement(fault_el, "Reason")
    ET.SubElement(reason_el, "Text").text = reason

    if detail:
        detail_el = ET.SubElement(fault_el, "Detail")
        ET.SubElement(detail_el, "Error").text = detail

    return ET.tostring(fault, encoding="utf-8", xml_declaration=True).decode("utf-8")


def ascii_header(value: str) -> str:
    return (value or "").encode("ascii", "replace").decode("ascii")


def build_context(request: Request, body: bytes) -> MessageContext:
    headers = {k: v for k, v in request.headers.items()}
    ctx = MessageContext(Message(body, headers))
    for name, value in headers.items():
        ctx.set_variable(f"request.header.{name.lower()}", value)
    for name, value in request.query_params.items():
        ctx.set_variable(f"request.queryparam.{name}", value)
    return ctx


# ----------------------------
# Middleware logging
# ----------------------------
@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info(f"[REQ] {request.method} {request.url.path}")
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error during request")
        raise
    logger.info(f"[RES] {request.method} {request.url.path} -> {response.status_code}")
    return response


# ----------------------------
# Endpoints
# ----------------------------
@app.post("/xop")
async def api_xop(request: Request):
    body = await request.body()
    properties = dict(request.query_params)
    logger.info(f"Received XOP request (action={properties.get('action', 'default')})")

    ctx = build_context(request, body)
    outcome = XopHandler(properties).run(ctx)
    action = outcome.variables.get("action", "")

    if not outcome.succeeded:
        logger.error(f"XOP {action or 'request'} failed: {outcome.error}")
        fault_xml = build_soap_fault(
            "Sender" if outcome.structural else "Receiver",
            "Invalid XOP message" if outcome.structural else "Processing Failure",
            outcome.stacktrace or outcome.error,
        )
        return Response(
            content=fault_xml,
            media_type="application/soap+xml",
            status_code=400 if outcome.structural else 500,
            headers={"X-Xop-Error": ascii_header(outcome.error), "X-Xop-Action": action},
        )

    if outcome.message is None:
        logger.info("XOP extract success")
        return Response(
            content=outcome.variables["extracted_xml"],
            media_type=EMBEDDED_CONTENT_TYPE,
            headers={"X-Xop-Action": action},
        )

    message = outcome.message
    logger.info(f"XOP {action} success ({len(message.content)} bytes)")
    return Response(
        content=message.content,
        media_type=message.get_header("content-type"),
        headers={"X-Xop-Action": action},
    )


EXAMPLE_BOUNDARY = "MIME_boundary"

EXAMPLE_BODY = (
    "--MIME_boundary\r\n"
    "Content-Type: application/soap+xml; charset=UTF-8\r\n"
    "Content-Transfer-Encoding: 8bit\r\n"
    "Content-ID: <rootpart@example.org>\r\n"
    "\r\n"
    "<S:Envelope xmlns:S='http://schemas.xmlsoap.org/soap/envelope/'>\n"
    "  <S:Body>\n"
    "    <Upload>\n"
    "      <Contents><xop:Include xmlns:xop='http://www.w3.org/2004/08/xop/include'"
    " href='cid:file@example.org'/></Contents>\n"
    "    </Upload>\n"
    "  </S:Body>\n"
    "</S:Envelope>\r\n"
    "--MIME_boundary\r\n"
    "Content-Type: application/octet-stream\r\n"
    "Content-Transfer-Encoding: binary\r\n"
    "Content-ID: <file@example.org>\r\n"
    "\r\n"
    "...binary data...\r\n"
    "--MIME_boundary--\r\n"
)


@app.get("/example")
def examples():
    return {
        "content_type": (
            f"multipart/related; boundary={EXAMPLE_BOUNDARY}; "
            "type=\"application/soap+xml\"; start=\"<rootpart@example.org>\""
        ),
        "body": EXAMPLE_BODY,
        "actions": [a.value for a in XopAction],
    }


# End of file
