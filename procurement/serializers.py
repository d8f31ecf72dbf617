from rest_framework import serializers

from .models import (
    BuyingWeightNote,
    QualityInspection,
    Trader,
    TraderPaymentTerms,
    TraderPerformance,
    TruckEntry,
    WeighbridgeReading,
)
from .states import BWNStatus, QCOutcome, allowed_next


class UserSummaryField(serializers.Field):
    def to_representation(self, user):
        return {
            "id": user.pk,
            "name": user.get_full_name() or user.get_username(),
            "email": user.email,
        }


class TraderSummaryField(serializers.Field):
    def to_representation(self, trader):
        return {
            "id": trader.pk,
            "name": trader.name,
            "traderCode": trader.trader_code,
            "phoneNumber": trader.phone_number,
        }


#
# ----------------------------------------------------------------------
# Traders
# ----------------------------------------------------------------------
#
class TraderPerformanceSerializer(serializers.ModelSerializer):
    traderId = serializers.IntegerField(source="trader_id", read_only=True)
    totalDeliveries = serializers.IntegerField(source="total_deliveries")
    totalVolumeKg = serializers.IntegerField(source="total_volume_kg")
    acceptedDeliveries = serializers.IntegerField(source="accepted_deliveries")
    rejectedDeliveries = serializers.IntegerField(source="rejected_deliveries")
    borderlineDeliveries = serializers.IntegerField(source="borderline_deliveries")
    qualityConsistencyScore = serializers.DecimalField(
        source="quality_consistency_score", max_digits=5, decimal_places=2
    )
    averageDefectCount = serializers.DecimalField(
        source="average_defect_count", max_digits=6, decimal_places=2
    )
    averageMoistureContent = serializers.DecimalField(
        source="average_moisture_content", max_digits=7, decimal_places=2
    )
    onTimeDeliveryRate = serializers.DecimalField(
        source="on_time_delivery_rate", max_digits=5, decimal_places=2
    )
    lastDeliveryDate = serializers.DateTimeField(source="last_delivery_date", allow_null=True)
    updatedAt = serializers.DateTimeField(source="updated_at")

    class Meta:
        model = TraderPerformance
        fields = [
            "id",
            "traderId",
            "totalDeliveries",
            "totalVolumeKg",
            "acceptedDeliveries",
            "rejectedDeliveries",
            "borderlineDeliveries",
            "qualityConsistencyScore",
            "averageDefectCount",
            "averageMoistureContent",
            "onTimeDeliveryRate",
            "lastDeliveryDate",
            "updatedAt",
        ]
        read_only_fields = fields


class TraderPaymentTermsSerializer(serializers.ModelSerializer):
    paymentDays = serializers.IntegerField(source="payment_days", required=False, min_value=0)
    preferredMethod = serializers.ChoiceField(
        source="preferred_method", choices=TraderPaymentTerms.METHOD_CHOICES, required=False
    )
    bankName = serializers.CharField(source="bank_name", required=False, allow_blank=True)
    accountNumber = serializers.CharField(source="account_number", required=False, allow_blank=True)
    accountName = serializers.CharField(source="account_name", required=False, allow_blank=True)
    mobileMoneyNumber = serializers.CharField(source="mobile_money_number", required=False, allow_blank=True)
    mobileMoneyName = serializers.CharField(source="mobile_money_name", required=False, allow_blank=True)
    requiresAdvance = serializers.BooleanField(source="requires_advance", required=False)

    class Meta:
        model = TraderPaymentTerms
        fields = [
            "paymentDays",
            "preferredMethod",
            "bankName",
            "accountNumber",
            "accountName",
            "mobileMoneyNumber",
            "mobileMoneyName",
            "requiresAdvance",
        ]


class TraderSerializer(serializers.ModelSerializer):
    traderCode = serializers.CharField(source="trader_code", read_only=True)
    contactPerson = serializers.CharField(source="contact_person", required=False, allow_blank=True)
    phoneNumber = serializers.CharField(source="phone_number")
    alternatePhone = serializers.CharField(source="alternate_phone", required=False, allow_blank=True)
    physicalAddress = serializers.CharField(source="physical_address", required=False, allow_blank=True)
    registrationNumber = serializers.CharField(source="registration_number", required=False, allow_blank=True)
    tinNumber = serializers.CharField(source="tin_number", required=False, allow_blank=True)
    trustScore = serializers.IntegerField(source="trust_score", required=False, min_value=0, max_value=100)
    reliabilityScore = serializers.IntegerField(source="reliability_score", required=False, min_value=0, max_value=100)
    totalDeliveries = serializers.IntegerField(source="total_deliveries", read_only=True)
    totalVolumeKg = serializers.IntegerField(source="total_volume_kg", read_only=True)
    qualityAcceptanceRate = serializers.DecimalField(
        source="quality_acceptance_rate", max_digits=5, decimal_places=2, read_only=True
    )
    preferredPaymentDays = serializers.IntegerField(source="preferred_payment_days", required=False, min_value=0)
    isActive = serializers.BooleanField(source="is_active", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)
    performance = TraderPerformanceSerializer(read_only=True)
    paymentTerms = TraderPaymentTermsSerializer(source="payment_terms", required=False)

    class Meta:
        model = Trader
        fields = [
            "id",
            "traderCode",
            "name",
            "contactPerson",
            "phoneNumber",
            "alternatePhone",
            "email",
            "physicalAddress",
            "district",
            "registrationNumber",
            "tinNumber",
            "status",
            "trustScore",
            "reliabilityScore",
            "totalDeliveries",
            "totalVolumeKg",
            "qualityAcceptanceRate",
            "preferredPaymentDays",
            "notes",
            "isActive",
            "createdAt",
            "updatedAt",
            "performance",
            "paymentTerms",
        ]
        extra_kwargs = {
            "email": {"required": False, "allow_blank": True},
            "district": {"required": False, "allow_blank": True},
            "notes": {"required": False, "allow_blank": True},
            # Status changes go through the dedicated endpoint.
            "status": {"required": False},
        }


class TraderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Trader.STATUS_CHOICES)


#
# ----------------------------------------------------------------------
# Gate & weighbridge
# ----------------------------------------------------------------------
#
class TruckEntrySerializer(serializers.ModelSerializer):
    truckNumber = serializers.CharField(source="truck_number")
    driverName = serializers.CharField(source="driver_name")
    driverPhone = serializers.CharField(source="driver_phone")
    traderId = serializers.IntegerField(source="trader_id")
    trader = TraderSummaryField(read_only=True)
    securityOfficer = UserSummaryField(source="security_officer", read_only=True)
    arrivalTime = serializers.DateTimeField(source="arrival_time")
    expectedArrival = serializers.DateField(source="expected_arrival", allow_null=True)
    hasReading = serializers.BooleanField(source="consumed")

    class Meta:
        model = TruckEntry
        fields = [
            "id",
            "truckNumber",
            "driverName",
            "driverPhone",
            "traderId",
            "trader",
            "securityOfficer",
            "arrivalTime",
            "expectedArrival",
            "notes",
            "hasReading",
        ]
        read_only_fields = fields


class TruckEntryCreateSerializer(serializers.Serializer):
    truckNumber = serializers.CharField(max_length=20)
    driverName = serializers.CharField(max_length=100)
    driverPhone = serializers.CharField(max_length=30, required=False, allow_blank=True)
    traderId = serializers.IntegerField()
    securityOfficerId = serializers.IntegerField(required=False)
    expectedArrival = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class WeighbridgeReadingSerializer(serializers.ModelSerializer):
    entryId = serializers.IntegerField(source="entry_id")
    entry = TruckEntrySerializer(read_only=True)
    grossWeightKg = serializers.IntegerField(source="gross_weight_kg")
    tareWeightKg = serializers.IntegerField(source="tare_weight_kg")
    netWeightKg = serializers.IntegerField(source="net_weight_kg")
    operatorId = serializers.IntegerField(source="operator_id")
    operator = UserSummaryField(read_only=True)
    hasBWN = serializers.BooleanField(source="converted")
    buyingWeightNote = serializers.SerializerMethodField()

    class Meta:
        model = WeighbridgeReading
        fields = [
            "id",
            "entryId",
            "entry",
            "grossWeightKg",
            "tareWeightKg",
            "netWeightKg",
            "operatorId",
            "operator",
            "timestamp",
            "notes",
            "hasBWN",
            "buyingWeightNote",
        ]
        read_only_fields = fields

    def get_buyingWeightNote(self, obj):
        if not obj.converted:
            return None
        note = BuyingWeightNote.objects.filter(weighbridge_reading=obj).only("id", "bwn_number", "status").first()
        if note is None:
            return None
        return {"id": note.pk, "bwnNumber": note.bwn_number, "status": note.status}


class WeighbridgeReadingCreateSerializer(serializers.Serializer):
    entryId = serializers.IntegerField()
    grossWeightKg = serializers.IntegerField()
    tareWeightKg = serializers.IntegerField()
    operatorId = serializers.IntegerField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


#
# ----------------------------------------------------------------------
# Buying Weight Notes
# ----------------------------------------------------------------------
#
class QualityInspectionSerializer(serializers.ModelSerializer):
    inspectionNumber = serializers.CharField(source="inspection_number")
    defectCount = serializers.IntegerField(source="defect_count")
    sampleWeightGrams = serializers.DecimalField(source="sample_weight_g", max_digits=8, decimal_places=2)
    screenSizePassPercentage = serializers.DecimalField(source="screen_size_pass_pct", max_digits=5, decimal_places=2)
    moisturePercentage = serializers.DecimalField(source="moisture_pct", max_digits=5, decimal_places=2)
    foreignMatterPercentage = serializers.DecimalField(source="foreign_matter_pct", max_digits=5, decimal_places=2)
    colorGrade = serializers.CharField(source="color_grade")
    priceAdjustmentPercentage = serializers.DecimalField(source="price_adjustment_pct", max_digits=5, decimal_places=2)
    inspectedAt = serializers.DateTimeField(source="inspected_at")

    class Meta:
        model = QualityInspection
        fields = [
            "inspectionNumber",
            "outcome",
            "defectCount",
            "sampleWeightGrams",
            "screenSizePassPercentage",
            "moisturePercentage",
            "foreignMatterPercentage",
            "colorGrade",
            "priceAdjustmentPercentage",
            "notes",
            "inspectedAt",
        ]
        read_only_fields = fields


class BuyingWeightNoteSerializer(serializers.ModelSerializer):
    bwnNumber = serializers.CharField(source="bwn_number")
    weighbridgeReadingId = serializers.IntegerField(source="weighbridge_reading_id")
    traderId = serializers.IntegerField(source="trader_id")
    trader = TraderSummaryField(read_only=True)
    truckNumber = serializers.CharField(source="truck_number")
    deliveryDate = serializers.DateTimeField(source="delivery_date")
    coffeeType = serializers.CharField(source="coffee_type")
    grossWeightKg = serializers.IntegerField(source="gross_weight_kg")
    tareWeightKg = serializers.IntegerField(source="tare_weight_kg")
    netWeightKg = serializers.IntegerField(source="net_weight_kg")
    moistureContent = serializers.IntegerField(source="moisture_content")
    moistureDeductionKg = serializers.IntegerField(source="moisture_deduction_kg")
    finalNetWeightKg = serializers.IntegerField(source="final_net_weight_kg")
    pricePerKgUGX = serializers.IntegerField(source="price_per_kg_ugx")
    # Serialized as a string so large totals survive JSON clients exactly.
    totalAmountUGX = serializers.SerializerMethodField()
    qualityAnalysisNo = serializers.CharField(source="quality_analysis_no")
    buyingCentre = serializers.CharField(source="buying_centre")
    paymentStatus = serializers.CharField(source="payment_status")
    qcOutcome = serializers.CharField(source="qc_outcome")
    qcBorderlineAccepted = serializers.BooleanField(source="qc_borderline_accepted")
    rejectionReason = serializers.CharField(source="rejection_reason")
    allowedTransitions = serializers.SerializerMethodField()
    createdBy = UserSummaryField(source="created_by", read_only=True)
    approvedBy = UserSummaryField(source="approved_by", read_only=True)
    approvedAt = serializers.DateTimeField(source="approved_at")
    paidAt = serializers.DateTimeField(source="paid_at")
    completedAt = serializers.DateTimeField(source="completed_at")
    rejectedAt = serializers.DateTimeField(source="rejected_at")
    createdAt = serializers.DateTimeField(source="created_at")
    updatedAt = serializers.DateTimeField(source="updated_at")

    class Meta:
        model = BuyingWeightNote
        fields = [
            "id",
            "bwnNumber",
            "weighbridgeReadingId",
            "traderId",
            "trader",
            "truckNumber",
            "deliveryDate",
            "coffeeType",
            "grossWeightKg",
            "tareWeightKg",
            "netWeightKg",
            "moistureContent",
            "moistureDeductionKg",
            "finalNetWeightKg",
            "pricePerKgUGX",
            "totalAmountUGX",
            "outturn",
            "qualityAnalysisNo",
            "buyingCentre",
            "status",
            "paymentStatus",
            "qcOutcome",
            "qcBorderlineAccepted",
            "rejectionReason",
            "allowedTransitions",
            "createdBy",
            "approvedBy",
            "approvedAt",
            "paidAt",
            "completedAt",
            "rejectedAt",
            "version",
            "createdAt",
            "updatedAt",
        ]
        read_only_fields = fields

    def get_totalAmountUGX(self, obj):
        return str(obj.total_amount_ugx)

    def get_allowedTransitions(self, obj):
        return sorted(str(s) for s in allowed_next(obj.status))


class BuyingWeightNoteDetailSerializer(BuyingWeightNoteSerializer):
    weighbridgeReading = WeighbridgeReadingSerializer(source="weighbridge_reading", read_only=True)
    qualityInspection = serializers.SerializerMethodField()

    class Meta(BuyingWeightNoteSerializer.Meta):
        fields = BuyingWeightNoteSerializer.Meta.fields + ["weighbridgeReading", "qualityInspection"]
        read_only_fields = fields

    def get_qualityInspection(self, obj):
        inspection = QualityInspection.objects.filter(note=obj).first()
        if inspection is None:
            return None
        return QualityInspectionSerializer(inspection).data


class BuyingWeightNoteCreateSerializer(serializers.Serializer):
    weighbridgeReadingId = serializers.IntegerField()
    coffeeType = serializers.CharField()
    moistureContent = serializers.IntegerField()
    pricePerKgUGX = serializers.IntegerField()
    outturn = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    qualityAnalysisNo = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    buyingCentre = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class BuyingWeightNoteUpdateSerializer(serializers.Serializer):
    moistureContent = serializers.IntegerField(required=False)
    pricePerKgUGX = serializers.IntegerField(required=False)
    expectedVersion = serializers.IntegerField(required=False)
    coffeeType = serializers.CharField(required=False)
    outturn = serializers.CharField(required=False, allow_blank=True)
    qualityAnalysisNo = serializers.CharField(required=False, allow_blank=True)
    buyingCentre = serializers.CharField(required=False, allow_blank=True)


class TransitionSerializer(serializers.Serializer):
    to = serializers.ChoiceField(choices=BWNStatus.choices)
    reason = serializers.CharField(required=False, allow_blank=True)
    expectedStatus = serializers.ChoiceField(choices=BWNStatus.choices, required=False)


class QCOutcomeSerializer(serializers.Serializer):
    outcome = serializers.ChoiceField(choices=QCOutcome.choices)
    borderlineAccepted = serializers.BooleanField(required=False, default=False)
    defectCount = serializers.IntegerField(required=False, default=0)
    inspectionNumber = serializers.CharField(required=False, allow_blank=True)
    sampleWeightGrams = serializers.DecimalField(max_digits=8, decimal_places=2, required=False)
    screenSizePassPercentage = serializers.DecimalField(max_digits=5, decimal_places=2, required=False)
    moisturePercentage = serializers.DecimalField(max_digits=5, decimal_places=2, required=False)
    foreignMatterPercentage = serializers.DecimalField(max_digits=5, decimal_places=2, required=False)
    colorGrade = serializers.CharField(required=False, allow_blank=True)
    priceAdjustmentPercentage = serializers.DecimalField(max_digits=5, decimal_places=2, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)

    # wire name -> QualityInspection field
    MEASUREMENT_FIELDS = {
        "inspectionNumber": "inspection_number",
        "sampleWeightGrams": "sample_weight_g",
        "screenSizePassPercentage": "screen_size_pass_pct",
        "moisturePercentage": "moisture_pct",
        "foreignMatterPercentage": "foreign_matter_pct",
        "colorGrade": "color_grade",
        "priceAdjustmentPercentage": "price_adjustment_pct",
        "notes": "notes",
    }

    def measurements(self):
        data = self.validated_data
        return {field: data[key] for key, field in self.MEASUREMENT_FIELDS.items() if key in data}
