from typing import Any, Optional


def ok(data: Any = None, message: Optional[str] = None, pagination: Optional[dict] = None, **extra) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    body.update(extra)
    return body
