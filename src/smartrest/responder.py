"""Default responder: shapes results and errors before encoding."""

from __future__ import annotations

from typing import Any, Dict

__all__ = ["DefaultResponder"]


class DefaultResponder:
    def format_response(self, result: Any) -> Any:
        return result

    def format_error(self, status: int, message: str) -> Dict[str, Any]:
        return {"error": {"code": status, "message": message}}
