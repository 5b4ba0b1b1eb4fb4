from fastapi import APIRouter, Depends

from app.auth.gate import require_auth
from app.auth.identity import Principal

router = APIRouter(prefix="/api/guardian", tags=["guardian"])


# TODO: back these with guardianship documents once the store gains a guardian-child link collection
@router.get("/children", description="Children linked to the calling guardian.")
async def guardian_children(principal: Principal = Depends(require_auth)):
    return []


@router.post("/add-child", description="Link a child account to the calling guardian.")
async def guardian_add_child(principal: Principal = Depends(require_auth)):
    return {"message": "Guardian functionality coming soon"}
