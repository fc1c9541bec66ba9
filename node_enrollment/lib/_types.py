"""Type definitions for the CA REST payloads."""

from typing import NotRequired, TypedDict


class EnrollRequestBody(TypedDict):
    """Body of POST /api/v1/enroll."""

    certificate_request: str
    caname: str
    hosts: NotRequired[list[str]]


class ServerInfo(TypedDict, total=False):
    """CA information returned with an enrollment (base64 fields)."""

    CAName: str
    CAChain: str
    IssuerPublicKey: str
    IssuerRevocationPublicKey: str
    Version: str


class EnrollResult(TypedDict, total=False):
    """'result' member of a successful enrollment response."""

    Cert: str
    ServerInfo: ServerInfo


class ResponseMessage(TypedDict):
    """Entry of the 'errors' or 'messages' list."""

    code: int
    message: str


class CAResponse(TypedDict, total=False):
    """Response envelope used by every CA endpoint."""

    success: bool
    result: EnrollResult
    errors: list[ResponseMessage]
    messages: list[ResponseMessage]
