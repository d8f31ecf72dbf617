from django.core.management.base import BaseCommand, CommandError

from procurement.models import Trader
from procurement.services.performance import recompute, recompute_all


class Command(BaseCommand):
    help = "Rebuild trader performance rollups from the buying weight note history."

    def add_arguments(self, parser):
        parser.add_argument(
            "--trader",
            help="Trader code (e.g. TRD-2025-001) to recompute; all traders when omitted.",
        )

    def handle(self, *args, **options):
        code = options.get("trader")
        if code:
            try:
                trader = Trader.objects.get(trader_code=code)
            except Trader.DoesNotExist:
                raise CommandError(f"Trader {code} not found")
            snap = recompute(trader.pk)
            self.stdout.write(
                self.style.SUCCESS(
                    f"{code}: {snap.total_deliveries} deliveries, {snap.total_volume_kg} kg accepted"
                )
            )
            return

        count = recompute_all()
        self.stdout.write(self.style.SUCCESS(f"Recomputed performance for {count} trader(s)"))
