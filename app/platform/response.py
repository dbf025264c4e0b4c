from typing import Any, Dict, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    Envelope used by the health route and every error handler:
    ``{status_code, status, message, data}``. ``status`` is "error" from 400 up.

    Scan and SEO payloads are returned bare; their clients read the fields at
    the top level.
    """
    body = {
        "status_code": status_code,
        "status": "error" if status_code >= 400 else "success",
        "message": message,
        "data": jsonable_encoder(data) if data is not None else {},
    }
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def error_response(message: str, status_code: int, errors: Optional[Any] = None) -> JSONResponse:
    return api_response(
        message=message or "Error",
        status_code=status_code,
        data={"errors": errors} if errors is not None else None,
        headers={"Cache-Control": "no-store"},
    )
