"""
Guard Shift Kanban
Blueprint helpers shared by the shift blueprints.
"""

from flask import g, request

from app.utils.errors import E, api_error

MANAGER_HEADER = "X-Manager-Id"


def require_manager_id():
    """``before_request`` hook: every shift route acts on behalf of a manager.

    Stores the id on ``g.manager_id``; a missing header ends the request
    with 401.
    """
    manager_id = (request.headers.get(MANAGER_HEADER) or "").strip()
    if not manager_id:
        return api_error(E.MANAGER_ID_REQUIRED, f"{MANAGER_HEADER} header is required")
    g.manager_id = manager_id
    return None


def list_arg(name: str) -> list[str]:
    """Comma-separated query parameter → list of non-empty strings.

    ``?statuses=assigned,confirmed`` and ``?statuses=assigned&statuses=confirmed``
    both work.
    """
    values = []
    for raw in request.args.getlist(name):
        values.extend(part.strip() for part in raw.split(","))
    return [v for v in values if v]


def bool_arg(name: str) -> bool:
    return (request.args.get(name) or "").lower() in ("1", "true", "yes")
