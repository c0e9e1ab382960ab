"""Audit logging for operator actions."""

import logging
from typing import Annotated

from fastapi import Header, Request

logger = logging.getLogger("audit")

ANONYMOUS_OPERATOR = "anonymous"


async def get_operator(
    x_operator: Annotated[str | None, Header(max_length=100)] = None,
) -> str:
    """Operator label from the ``X-Operator`` header; not an authentication check."""
    return (x_operator or "").strip() or ANONYMOUS_OPERATOR


def audit_logged(action: str):
    """Dependency factory that logs operator actions.

    Usage::

        @router.post("/{code}/approve", dependencies=[Depends(audit_logged("approve"))])
    """

    async def _log(
        request: Request,
        x_operator: Annotated[str | None, Header(max_length=100)] = None,
    ) -> None:
        client_ip = request.client.host if request.client else "unknown"
        request_id = getattr(request.state, "request_id", "n/a")
        logger.info(
            "AUDIT action=%s operator=%s code=%s ip=%s request_id=%s path=%s",
            action,
            (x_operator or "").strip() or ANONYMOUS_OPERATOR,
            request.path_params.get("code", "-"),
            client_ip,
            request_id,
            request.url.path,
        )

    return _log
