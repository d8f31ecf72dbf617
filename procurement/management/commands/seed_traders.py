from django.core.management.base import BaseCommand

from procurement.models import Trader
from procurement.services.traders import register_trader, update_trader

DEMO_TRADERS = [
    {
        "name": "Ahmed Coffee Traders",
        "contact_person": "Ahmed Hassan",
        "phone_number": "+256700123456",
        "alternate_phone": "+256750123456",
        "email": "ahmed@coffetraders.com",
        "physical_address": "Plot 45, Kampala Road",
        "district": "Kampala",
        "registration_number": "BRN-2023-001234",
        "tin_number": "TIN-1001234567",
        "status": Trader.ACTIVE,
        "trust_score": 85,
        "reliability_score": 90,
        "notes": "Reliable trader, consistently delivers high-quality Arabica coffee",
        "payment_terms": {
            "preferred_method": "BANK_TRANSFER",
            "bank_name": "Stanbic Bank",
            "account_number": "9030012345678",
            "account_name": "Ahmed Coffee Traders Ltd",
        },
    },
    {
        "name": "Mbale Highland Farmers",
        "contact_person": "Sarah Nambozo",
        "phone_number": "+256750987654",
        "alternate_phone": "+256700987654",
        "email": "sarah@mbalehighland.com",
        "physical_address": "Mbale Town, Eastern Region",
        "district": "Mbale",
        "registration_number": "BRN-2022-005678",
        "tin_number": "TIN-1005678901",
        "status": Trader.ACTIVE,
        "trust_score": 92,
        "reliability_score": 95,
        "notes": "Top-quality Arabica from Mount Elgon region",
        "payment_terms": {
            "preferred_method": "BANK_TRANSFER",
            "bank_name": "Centenary Bank",
            "account_number": "3100567890123",
            "account_name": "Mbale Highland Farmers Cooperative",
        },
    },
    {
        "name": "Busoga Robusta Co-op",
        "contact_person": "James Mukasa",
        "phone_number": "+256782345678",
        "alternate_phone": "+256772345678",
        "email": "james@busogacoffee.ug",
        "physical_address": "Jinja Road, Busoga Region",
        "district": "Jinja",
        "registration_number": "BRN-2021-009876",
        "tin_number": "TIN-1009876543",
        "status": Trader.ACTIVE,
        "trust_score": 78,
        "reliability_score": 82,
        "notes": "Large volume supplier of Robusta coffee",
        "payment_terms": {
            "preferred_method": "MOBILE_MONEY",
            "mobile_money_number": "+256782345678",
            "mobile_money_name": "James Mukasa",
        },
    },
    {
        "name": "Kasese Mountain Coffee",
        "contact_person": "Grace Birungi",
        "phone_number": "+256701234567",
        "email": "grace@kasesemc.com",
        "physical_address": "Kasese Town, Rwenzori Region",
        "district": "Kasese",
        "registration_number": "BRN-2023-002345",
        "tin_number": "TIN-1002345678",
        "status": Trader.ACTIVE,
        "trust_score": 88,
        "reliability_score": 87,
        "notes": "Specialty Arabica from Rwenzori mountains",
        "payment_terms": {
            "preferred_method": "BANK_TRANSFER",
            "bank_name": "DFCU Bank",
            "account_number": "2200345678901",
            "account_name": "Kasese Mountain Coffee Ltd",
        },
    },
    {
        "name": "Masaka Central Traders",
        "contact_person": "Peter Ssemakula",
        "phone_number": "+256755678901",
        "alternate_phone": "+256705678901",
        "email": "peter@masakacoffee.com",
        "physical_address": "Masaka Town Center",
        "district": "Masaka",
        "registration_number": "BRN-2022-007890",
        "tin_number": "TIN-1007890123",
        "status": Trader.UNDER_REVIEW,
        "trust_score": 65,
        "reliability_score": 70,
        "notes": "Under review due to recent quality inconsistencies",
        "payment_terms": {
            "preferred_method": "BANK_TRANSFER",
            "account_name": "Masaka Central Traders",
        },
    },
    {
        "name": "Mbarara Premium Coffee",
        "contact_person": "David Tumwebaze",
        "phone_number": "+256774567890",
        "email": "david@mbaracoffee.ug",
        "physical_address": "Mbarara Municipality",
        "district": "Mbarara",
        "status": Trader.SUSPENDED,
        "trust_score": 45,
        "reliability_score": 50,
        "notes": "Suspended due to payment disputes",
        "payment_terms": {
            "preferred_method": "MOBILE_MONEY",
            "mobile_money_number": "+256774567890",
            "mobile_money_name": "David Tumwebaze",
        },
    },
]


class Command(BaseCommand):
    help = (
        "Register the demo coffee traders with their payment terms. Traders "
        "that already exist (matched by name) are left alone."
    )

    def handle(self, *args, **options):
        created = 0
        for row in DEMO_TRADERS:
            details = dict(row)
            terms = details.pop("payment_terms")
            name = details.pop("name")
            if Trader.objects.filter(name=name).exists():
                self.stdout.write(f"Skipping {name}: already registered")
                continue
            trader = register_trader(name, details.pop("phone_number"), **details)
            update_trader(trader.pk, payment_terms=terms)
            created += 1
            self.stdout.write(f"Registered {trader.trader_code} {name}")

        self.stdout.write(self.style.SUCCESS(f"{created} trader(s) seeded"))
