from django.contrib import admin

from .models import (
    BuyingWeightNote,
    NoteSequence,
    QualityInspection,
    Trader,
    TraderPaymentTerms,
    TraderPerformance,
    TruckEntry,
    WeighbridgeReading,
)


class TraderPaymentTermsInline(admin.StackedInline):
    model = TraderPaymentTerms
    extra = 0


@admin.register(Trader)
class TraderAdmin(admin.ModelAdmin):
    list_display = ("trader_code", "name", "phone_number", "status", "total_deliveries", "is_active")
    list_filter = ("status", "is_active", "district")
    search_fields = ("trader_code", "name", "phone_number", "email")
    readonly_fields = ("total_deliveries", "total_volume_kg", "quality_acceptance_rate")
    inlines = [TraderPaymentTermsInline]


@admin.register(TraderPerformance)
class TraderPerformanceAdmin(admin.ModelAdmin):
    list_display = (
        "trader",
        "total_deliveries",
        "accepted_deliveries",
        "rejected_deliveries",
        "borderline_deliveries",
        "quality_consistency_score",
        "on_time_delivery_rate",
        "updated_at",
    )

    # Rows are only ever written by the recompute.
    def has_change_permission(self, request, obj=None):
        return False


@admin.register(TruckEntry)
class TruckEntryAdmin(admin.ModelAdmin):
    list_display = ("truck_number", "driver_name", "trader", "arrival_time", "consumed")
    list_filter = ("consumed",)
    search_fields = ("truck_number", "driver_name", "driver_phone")


@admin.register(WeighbridgeReading)
class WeighbridgeReadingAdmin(admin.ModelAdmin):
    list_display = ("entry", "gross_weight_kg", "tare_weight_kg", "net_weight_kg", "operator", "timestamp", "converted")
    list_filter = ("converted",)


@admin.register(BuyingWeightNote)
class BuyingWeightNoteAdmin(admin.ModelAdmin):
    list_display = (
        "bwn_number",
        "trader",
        "coffee_type",
        "final_net_weight_kg",
        "total_amount_ugx",
        "status",
        "payment_status",
    )
    list_filter = ("status", "payment_status", "coffee_type")
    search_fields = ("bwn_number", "truck_number", "trader__name")
    # Status changes must go through the lifecycle service.
    readonly_fields = (
        "status",
        "payment_status",
        "moisture_deduction_kg",
        "final_net_weight_kg",
        "total_amount_ugx",
        "version",
    )


@admin.register(QualityInspection)
class QualityInspectionAdmin(admin.ModelAdmin):
    list_display = ("note", "inspection_number", "outcome", "defect_count", "inspected_at")
    list_filter = ("outcome",)


admin.site.register(NoteSequence)
