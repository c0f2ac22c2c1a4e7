from fastapi import APIRouter
from app.api.v1.endpoints.audit import reports, sessions, team, verifications

api_router = APIRouter()

# Audit routes
api_router.include_router(team.router, prefix="/audit", tags=["Audit Team"])
api_router.include_router(sessions.router, prefix="/audit", tags=["Audit Sessions"])
api_router.include_router(verifications.router, prefix="/audit", tags=["Audit Verifications"])
api_router.include_router(reports.router, prefix="/audit", tags=["Audit Reports"])
