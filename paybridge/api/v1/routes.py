from fastapi import APIRouter
from paybridge.api.v1.endpoints import cards, click

router = APIRouter()

router.include_router(click.router, prefix="/click", tags=["click"])
router.include_router(cards.router, prefix="/cards", tags=["cards"])
