from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Trader, TraderPaymentTerms, TraderPerformance


@receiver(post_save, sender=Trader)
def create_trader_rollups(sender, instance, created, **kwargs):
    """Give every new trader a default performance row and payment terms."""
    if not created:
        return
    TraderPerformance.objects.get_or_create(trader=instance)
    TraderPaymentTerms.objects.get_or_create(
        trader=instance,
        defaults={"payment_days": instance.preferred_payment_days},
    )
