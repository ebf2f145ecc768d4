from fastapi import APIRouter
import logging

from . import referral_settings, rewards

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

router.include_router(referral_settings.router)
router.include_router(rewards.router)
log.debug("Admin referral routers included")
