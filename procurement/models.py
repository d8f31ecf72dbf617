# models.py

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from .states import BWNStatus, PaymentStatus, QCOutcome

MAX_MOISTURE_TENTHS = 1000
MAX_DEFECT_COUNT = 86


#
# ——————————————————————————————————————
# Traders
# ——————————————————————————————————————
#
class Trader(models.Model):
    """Coffee supplier delivering trucks to the buying centre."""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BLACKLISTED = "BLACKLISTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    STATUS_CHOICES = [
        (ACTIVE, "Active"),
        (SUSPENDED, "Suspended"),
        (BLACKLISTED, "Blacklisted"),
        (UNDER_REVIEW, "Under review"),
    ]

    trader_code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=200)
    contact_person = models.CharField(max_length=200, blank=True)
    phone_number = models.CharField(max_length=30)
    alternate_phone = models.CharField(max_length=30, blank=True)
    email = models.EmailField(blank=True)
    physical_address = models.CharField(max_length=255, blank=True)
    district = models.CharField(max_length=100, blank=True)
    registration_number = models.CharField(max_length=100, blank=True)
    tin_number = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=ACTIVE)
    trust_score = models.PositiveSmallIntegerField(
        default=50, validators=[MaxValueValidator(100)]
    )
    reliability_score = models.PositiveSmallIntegerField(
        default=50, validators=[MaxValueValidator(100)]
    )
    # Rolled up by the performance aggregator; do not edit by hand.
    total_deliveries = models.PositiveIntegerField(default=0)
    total_volume_kg = models.PositiveBigIntegerField(default=0)
    quality_acceptance_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    preferred_payment_days = models.PositiveSmallIntegerField(default=1)
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.trader_code} – {self.name}"

    @property
    def is_eligible(self) -> bool:
        return self.is_active and self.status == self.ACTIVE


class TraderPaymentTerms(models.Model):
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_MONEY = "MOBILE_MONEY"
    CASH = "CASH"
    CHEQUE = "CHEQUE"
    METHOD_CHOICES = [
        (BANK_TRANSFER, "Bank transfer"),
        (MOBILE_MONEY, "Mobile money"),
        (CASH, "Cash"),
        (CHEQUE, "Cheque"),
    ]

    trader = models.OneToOneField(Trader, on_delete=models.CASCADE, related_name="payment_terms")
    payment_days = models.PositiveSmallIntegerField(default=1)
    preferred_method = models.CharField(max_length=20, choices=METHOD_CHOICES, default=BANK_TRANSFER)
    bank_name = models.CharField(max_length=100, blank=True)
    account_number = models.CharField(max_length=50, blank=True)
    account_name = models.CharField(max_length=200, blank=True)
    mobile_money_number = models.CharField(max_length=30, blank=True)
    mobile_money_name = models.CharField(max_length=200, blank=True)
    requires_advance = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Payment terms for {self.trader.name}"


class TraderPerformance(models.Model):
    """Per-trader rollup, always rewritten in full by a recompute."""

    trader = models.OneToOneField(Trader, on_delete=models.CASCADE, related_name="performance")
    total_deliveries = models.PositiveIntegerField(default=0)
    total_volume_kg = models.PositiveBigIntegerField(default=0)
    accepted_deliveries = models.PositiveIntegerField(default=0)
    rejected_deliveries = models.PositiveIntegerField(default=0)
    borderline_deliveries = models.PositiveIntegerField(default=0)
    quality_consistency_score = models.DecimalField(max_digits=5, decimal_places=2, default=50)
    average_defect_count = models.DecimalField(max_digits=6, decimal_places=2, default=0)
    average_moisture_content = models.DecimalField(max_digits=7, decimal_places=2, default=0)
    on_time_delivery_rate = models.DecimalField(max_digits=5, decimal_places=2, default=100)
    last_delivery_date = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Performance of {self.trader.name}"


#
# ——————————————————————————————————————
# Gate & weighbridge
# ——————————————————————————————————————
#
class TruckEntry(models.Model):
    """A truck registered at the gate, waiting to be weighed."""

    truck_number = models.CharField(max_length=20)
    driver_name = models.CharField(max_length=100)
    driver_phone = models.CharField(max_length=30, blank=True)
    trader = models.ForeignKey(Trader, on_delete=models.PROTECT, related_name="truck_entries")
    security_officer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="registered_truck_entries",
    )
    arrival_time = models.DateTimeField(default=timezone.now)
    expected_arrival = models.DateField(
        null=True, blank=True, help_text="Booked delivery date, used for on-time scoring"
    )
    notes = models.TextField(blank=True)
    consumed = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-arrival_time"]
        verbose_name_plural = "truck entries"

    def __str__(self):
        return f"{self.truck_number} ({self.driver_name})"


class WeighbridgeReading(models.Model):
    entry = models.OneToOneField(
        TruckEntry, on_delete=models.PROTECT, related_name="weighbridge_reading"
    )
    gross_weight_kg = models.PositiveIntegerField()
    tare_weight_kg = models.PositiveIntegerField()
    # Stored for querying; always gross - tare (see constraint below).
    net_weight_kg = models.PositiveIntegerField()
    operator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="weighbridge_readings",
    )
    timestamp = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True)
    converted = models.BooleanField(default=False)

    class Meta:
        ordering = ["-timestamp"]
        constraints = [
            models.CheckConstraint(
                condition=Q(gross_weight_kg__gt=F("tare_weight_kg")),
                name="reading_gross_gt_tare",
            ),
            models.CheckConstraint(
                condition=Q(net_weight_kg=F("gross_weight_kg") - F("tare_weight_kg")),
                name="reading_net_is_gross_minus_tare",
            ),
        ]

    def __str__(self):
        return f"{self.entry.truck_number}: {self.net_weight_kg} kg net"


#
# ——————————————————————————————————————
# Buying Weight Notes
# ——————————————————————————————————————
#
class NoteSequence(models.Model):
    """Last BWN number issued in a calendar month (``YYYY-MM``)."""

    period = models.CharField(max_length=7, primary_key=True)
    last_value = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.period}: {self.last_value}"


class BuyingWeightNote(models.Model):
    ARABICA = "ARABICA"
    ROBUSTA = "ROBUSTA"
    COFFEE_TYPE_CHOICES = [
        (ARABICA, "Arabica"),
        (ROBUSTA, "Robusta"),
    ]

    bwn_number = models.CharField(max_length=20, unique=True)
    weighbridge_reading = models.OneToOneField(
        WeighbridgeReading,
        on_delete=models.PROTECT,
        related_name="buying_weight_note",
    )
    trader = models.ForeignKey(Trader, on_delete=models.PROTECT, related_name="buying_weight_notes")
    truck_number = models.CharField(max_length=20)
    delivery_date = models.DateTimeField()
    coffee_type = models.CharField(max_length=10, choices=COFFEE_TYPE_CHOICES)

    gross_weight_kg = models.PositiveIntegerField()
    tare_weight_kg = models.PositiveIntegerField()
    net_weight_kg = models.PositiveIntegerField()
    moisture_content = models.PositiveSmallIntegerField(
        help_text="Tenths of a percent, e.g. 115 = 11.5%",
        validators=[MaxValueValidator(MAX_MOISTURE_TENTHS)],
    )
    moisture_deduction_kg = models.PositiveIntegerField(default=0)
    final_net_weight_kg = models.PositiveIntegerField()
    price_per_kg_ugx = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    total_amount_ugx = models.PositiveBigIntegerField()

    outturn = models.CharField(max_length=50, blank=True)
    quality_analysis_no = models.CharField(max_length=50, blank=True)
    buying_centre = models.CharField(max_length=100, blank=True)

    status = models.CharField(
        max_length=20, choices=BWNStatus.choices, default=BWNStatus.PENDING_WEIGHING
    )
    payment_status = models.CharField(
        max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.PENDING
    )
    qc_outcome = models.CharField(max_length=10, choices=QCOutcome.choices, blank=True)
    qc_borderline_accepted = models.BooleanField(default=False)
    rejection_reason = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="created_buying_weight_notes",
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="approved_buying_weight_notes",
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(moisture_content__lte=MAX_MOISTURE_TENTHS),
                name="bwn_moisture_in_range",
            ),
            models.CheckConstraint(
                condition=Q(price_per_kg_ugx__gt=0),
                name="bwn_price_positive",
            ),
        ]
        indexes = [
            models.Index(fields=["trader", "status"]),
        ]

    def __str__(self):
        return f"{self.bwn_number} ({self.get_status_display()})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (BWNStatus.COMPLETED, BWNStatus.REJECTED)


class QualityInspection(models.Model):
    """Result handed over by the QC lab for a note awaiting QC."""

    note = models.OneToOneField(
        BuyingWeightNote, on_delete=models.CASCADE, related_name="quality_inspection"
    )
    inspection_number = models.CharField(max_length=30, blank=True)
    inspector = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="quality_inspections",
    )
    sample_weight_g = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    defect_count = models.PositiveSmallIntegerField(
        default=0, validators=[MaxValueValidator(MAX_DEFECT_COUNT)]
    )
    screen_size_pass_pct = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    moisture_pct = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    foreign_matter_pct = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    color_grade = models.CharField(max_length=30, blank=True)
    outcome = models.CharField(max_length=10, choices=QCOutcome.choices)
    price_adjustment_pct = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True)
    inspected_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-inspected_at"]

    def __str__(self):
        return f"QC {self.inspection_number or self.pk} for {self.note.bwn_number}: {self.outcome}"
