# mcp_bridge/mcp_handlers/jsonrpc.py
from typing import Any, Dict, Optional, Union

from fastapi import status
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)

# Server-defined code for "the session is not authenticated".
AUTH_REQUIRED = -32001

RequestId = Optional[Union[str, int]]


class JSONRPCProtocolError(Exception):
    """A JSON-RPC error response, with the HTTP status it is sent under."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int,
        data: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.data = data
        super().__init__(message)

    def to_payload(self, request_id: RequestId) -> Dict[str, Any]:
        return error_payload(request_id, self.code, self.message, self.data)


def result_payload(request_id: RequestId, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_payload(
    request_id: RequestId, code: int, message: str, data: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def parse_error(detail: str = "Parse error") -> JSONRPCProtocolError:
    return JSONRPCProtocolError(PARSE_ERROR, detail, status.HTTP_400_BAD_REQUEST)


def invalid_request(detail: str = "Invalid Request") -> JSONRPCProtocolError:
    return JSONRPCProtocolError(INVALID_REQUEST, detail, status.HTTP_400_BAD_REQUEST)


def method_not_found(detail: str) -> JSONRPCProtocolError:
    return JSONRPCProtocolError(METHOD_NOT_FOUND, detail, status.HTTP_404_NOT_FOUND)


def invalid_params(detail: str, data: Optional[Dict[str, Any]] = None) -> JSONRPCProtocolError:
    return JSONRPCProtocolError(INVALID_PARAMS, detail, status.HTTP_400_BAD_REQUEST, data)


def internal_error(detail: str) -> JSONRPCProtocolError:
    return JSONRPCProtocolError(INTERNAL_ERROR, detail, status.HTTP_500_INTERNAL_SERVER_ERROR)


def auth_required(auth_url: str) -> JSONRPCProtocolError:
    return JSONRPCProtocolError(
        AUTH_REQUIRED,
        "Authentication required",
        status.HTTP_401_UNAUTHORIZED,
        {"authUrl": auth_url},
    )
