from __future__ import annotations

from fastapi import APIRouter

from lodge_gateway.response import now_iso


router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def get_health():
	return {"ok": True, "ts": now_iso()}
