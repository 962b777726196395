"""
XOP action engine.

`transform(config, message)` runs one of three actions against a
multipart/related message and returns an XopOutcome without touching the
input. `XopHandler` adapts it to a host that keeps messages and results
in a variable store (MessageContext).

- EDIT_1: drop the UsernameToken from part 1, pass part 2 through as is
- EXTRACT_SOAP: publish part 1 as text
- TRANSFORM_TO_EMBEDDED: inline every attachment into part 1 as base64
"""

import io
import logging
import shutil
import traceback
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import XopAction, XopConfig, parse_debug
from .content_types import ContentTypeAllowlist
from .errors import XopError, describe_exception
from .message import Message, MessageContext
from .multipart import MultipartInput, MultipartOutput, PartInput
from .wssec import remove_username_token
from .xml_utils import parse_xml
from .xop_include import check_attachment_type, embed_attachments

logger = logging.getLogger(__name__)

VAR_PREFIX = "xop_"
EMBEDDED_CONTENT_TYPE = "text/xml"


class ExecutionResult(str, Enum):
    SUCCESS = "SUCCESS"
    ABORT = "ABORT"


class XopOutcome(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    result: ExecutionResult
    # rewritten message; None when the action leaves the message alone or fails
    message: Optional[Message] = None
    variables: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None
    exception: Optional[str] = None
    stacktrace: Optional[str] = None
    # configuration/structural problem rather than an unexpected failure
    structural: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result == ExecutionResult.SUCCESS


def abort(exc: Exception, variables: Optional[Dict[str, str]] = None, debug: bool = False) -> XopOutcome:
    exception_text, error_text = describe_exception(exc)
    stacktrace = None
    if debug and not isinstance(exc, XopError):
        stacktrace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return XopOutcome(
        result=ExecutionResult.ABORT,
        variables=dict(variables or {}),
        error=error_text,
        exception=exception_text,
        stacktrace=stacktrace,
        structural=isinstance(exc, XopError),
    )


# ----------------------------
# Actions
# ----------------------------
def read_xml_part(mpi: MultipartInput, allowlist: ContentTypeAllowlist) -> PartInput:
    part = mpi.next_part()
    if part is None:
        raise XopError("no parts found")
    ctype = part.content_type
    if ctype is None:
        raise XopError("no content-type found (part1)")
    if not allowlist.accepts(ctype):
        raise XopError(f"unexpected content-type for part #1 ({ctype})")
    return part


def edit_1(mpi: MultipartInput, message: Message, config: XopConfig, variables: Dict[str, str]) -> Message:
    part1 = read_xml_part(mpi, config.xml_content_types)
    transformed = remove_username_token(part1.read())
    variables["transformed"] = transformed

    out = io.BytesIO()
    mpo = MultipartOutput(out, message.get_header("content-type"), mpi.boundary)
    part_out1 = mpo.new_part()
    part_out1.copy_headers(part1)
    part_out1.write(transformed.encode("utf-8"))

    part2 = mpi.next_part()
    if part2 is None:
        raise XopError("missing part #2")
    check_attachment_type(part2, config.attachment_content_types)
    part_out2 = mpo.new_part()
    part_out2.copy_headers(part2)
    shutil.copyfileobj(part2.get_input_stream(), part_out2)

    if mpi.next_part() is not None:
        raise XopError("unexpected part #3")
    mpo.close()

    output = message.copy()
    output.set_content(out.getvalue())
    return output


def extract_soap(mpi: MultipartInput, config: XopConfig, variables: Dict[str, str]):
    part1 = read_xml_part(mpi, config.xml_content_types)
    variables["extracted_xml"] = part1.read().decode("utf-8")


def transform_to_embedded(mpi: MultipartInput, message: Message, config: XopConfig) -> Message:
    part1 = read_xml_part(mpi, config.xml_content_types)
    document = parse_xml(part1.read())
    result_xml = embed_attachments(document, mpi, config.attachment_content_types)

    output = message.copy()
    output.set_content(result_xml.encode("utf-8"))
    output.set_header("content-type", EMBEDDED_CONTENT_TYPE)
    return output


def transform(config: XopConfig, message: Message) -> XopOutcome:
    """Run the configured action; the input message is never modified."""
    variables = {"action": config.action.value.lower()}
    output = None
    try:
        content_type = message.get_header("content-type")
        if content_type is None:
            raise XopError("no content-type found")
        mpi = MultipartInput(message.get_content_as_stream(), content_type)

        if config.action == XopAction.EDIT_1:
            output = edit_1(mpi, message, config, variables)
        elif config.action == XopAction.EXTRACT_SOAP:
            extract_soap(mpi, config, variables)
        elif config.action == XopAction.TRANSFORM_TO_EMBEDDED:
            output = transform_to_embedded(mpi, message, config)
        else:
            raise XopError("unsupported action")

    except XopError as exc:
        logger.warning(f"{config.action.value} aborted: {exc}")
        return abort(exc, {"action": variables["action"]})
    except Exception as exc:
        logger.exception(f"Unexpected error during {config.action.value}")
        return abort(exc, {"action": variables["action"]}, debug=config.debug)

    logger.info(f"{config.action.value} success")
    return XopOutcome(result=ExecutionResult.SUCCESS, message=output, variables=variables)


# ----------------------------
# Host adapter
# ----------------------------
class XopHandler:
    """Reads properties, runs the action against the source message and
    publishes xop_* variables back into the MessageContext."""

    def __init__(self, properties: Mapping[Any, Any]):
        self.properties = {
            k: v for k, v in properties.items() if isinstance(k, str) and isinstance(v, str)
        }

    def var_name(self, name: str) -> str:
        return VAR_PREFIX + name

    def get_debug(self) -> bool:
        # raw property, for when the config itself failed to resolve
        return parse_debug(self.properties.get("debug"))

    def _run(self, msg_ctxt: MessageContext):
        try:
            config = XopConfig.from_properties(self.properties, msg_ctxt.get_variable)
        except XopError as exc:
            logger.warning(f"configuration error: {exc}")
            return abort(exc), None
        except Exception as exc:
            logger.exception("Failed to resolve configuration")
            return abort(exc, debug=self.get_debug()), None

        message = msg_ctxt.get_variable(config.source)
        if message is None:
            variables = {"action": config.action.value.lower()}
            return abort(XopError("source message is null."), variables), None
        return transform(config, message), message

    def run(self, msg_ctxt: MessageContext) -> XopOutcome:
        return self._run(msg_ctxt)[0]

    def execute(self, msg_ctxt: MessageContext) -> ExecutionResult:
        outcome, message = self._run(msg_ctxt)
        for name, value in outcome.variables.items():
            msg_ctxt.set_variable(self.var_name(name), value)

        if not outcome.succeeded:
            msg_ctxt.set_variable(self.var_name("exception"), outcome.exception)
            msg_ctxt.set_variable(self.var_name("error"), outcome.error)
            if outcome.stacktrace:
                msg_ctxt.set_variable(self.var_name("stacktrace"), outcome.stacktrace)
            return outcome.result

        if outcome.message is not None:
            message.set_content(outcome.message.content)
            for name, value in outcome.message.headers.items():
                message.set_header(name, value)
        return outcome.result
