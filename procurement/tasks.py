import logging

from celery import shared_task

from procurement.exceptions import TraderNotFound
from procurement.services.performance import recompute

logger = logging.getLogger(__name__)


@shared_task
def recompute_trader_performance(trader_id):
    """Worker entry point for the post-commit performance recompute."""
    try:
        snap = recompute(trader_id)
    except TraderNotFound:
        logger.warning("Skipping performance recompute: trader %s no longer exists", trader_id)
        return None
    return snap.total_deliveries
