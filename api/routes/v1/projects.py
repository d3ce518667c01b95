"""
api/routes/v1/projects.py -- Project membership capability check.

Routes:
  GET /api/v1/projects/{project_id}/membership -- the caller's role in the project

Project and membership CRUD live in the project service; this router only
exposes the read-only permission check so clients can decide which controls
to render. Any member role is admitted; non-members get 400, unauthenticated
callers 401.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import UserResponse, envelope
from auth.dependencies import require_project_role
from auth.models import AVAILABLE_USER_ROLES, Principal

router = APIRouter()


@router.get("/projects/{project_id}/membership")
def project_membership(
    project_id: str,
    principal: Principal = Depends(require_project_role(*AVAILABLE_USER_ROLES)),
) -> dict:
    return envelope(
        200,
        {"projectId": project_id, "role": principal.role, "user": UserResponse.from_domain(principal).model_dump(by_alias=True)},
        "Project membership fetched successfully",
    )
