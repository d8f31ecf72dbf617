import logging

from django.contrib.auth import get_user_model
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .exceptions import ValidationError
from .serializers import (
    BuyingWeightNoteCreateSerializer,
    BuyingWeightNoteDetailSerializer,
    BuyingWeightNoteSerializer,
    BuyingWeightNoteUpdateSerializer,
    QCOutcomeSerializer,
    TraderPerformanceSerializer,
    TraderSerializer,
    TraderStatusSerializer,
    TransitionSerializer,
    TruckEntryCreateSerializer,
    TruckEntrySerializer,
    WeighbridgeReadingCreateSerializer,
    WeighbridgeReadingSerializer,
)
from .services import bwn, performance, traders, truck_entries, weighbridge

logger = logging.getLogger(__name__)


def _validated(serializer_class, data, partial=False):
    """Run a request serializer; shape failures become a typed ValidationError."""
    ser = serializer_class(data=data, partial=partial)
    if not ser.is_valid():
        raise ValidationError("Invalid request body", fields=ser.errors)
    return ser


def _user_or_default(user_id, default):
    if user_id is None:
        return default
    User = get_user_model()
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        raise ValidationError("User not found", user_id=user_id)


def _flag(value) -> bool:
    return str(value).lower() in {"1", "true", "yes"}


class _ListMixin:
    """Paginate when a paginator is configured, otherwise return a plain list."""

    def _list_response(self, queryset, serializer_class):
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(serializer_class(page, many=True).data)
        return Response(serializer_class(queryset, many=True).data)


#
# ----------------------------------------------------------------------
# Gate & weighbridge
# ----------------------------------------------------------------------
#
class TruckEntryViewSet(_ListMixin, viewsets.GenericViewSet):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = TruckEntrySerializer

    def list(self, request):
        qs = truck_entries.search_entries(request.query_params.get("search"))
        return self._list_response(qs, TruckEntrySerializer)

    def retrieve(self, request, pk=None):
        return Response(TruckEntrySerializer(truck_entries.get_entry(pk)).data)

    def create(self, request):
        data = _validated(TruckEntryCreateSerializer, request.data).validated_data
        officer = _user_or_default(data.get("securityOfficerId"), request.user)
        entry = truck_entries.register_entry(
            data["truckNumber"],
            data["driverName"],
            data["traderId"],
            officer,
            driver_phone=data.get("driverPhone"),
            expected_arrival=data.get("expectedArrival"),
            notes=data.get("notes"),
        )
        return Response(TruckEntrySerializer(entry).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="pending")
    def pending(self, request):
        return Response(TruckEntrySerializer(truck_entries.pending_entries(), many=True).data)


class WeighbridgeReadingViewSet(_ListMixin, viewsets.GenericViewSet):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = WeighbridgeReadingSerializer

    def list(self, request):
        qs = weighbridge.list_readings(
            search=request.query_params.get("search"),
            unconverted=_flag(request.query_params.get("unconverted", "")),
        )
        return self._list_response(qs, WeighbridgeReadingSerializer)

    def retrieve(self, request, pk=None):
        return Response(WeighbridgeReadingSerializer(weighbridge.get_reading(pk)).data)

    def create(self, request):
        data = _validated(WeighbridgeReadingCreateSerializer, request.data).validated_data
        operator = _user_or_default(data.get("operatorId"), request.user)
        reading = weighbridge.record_reading(
            data["entryId"],
            data["grossWeightKg"],
            data["tareWeightKg"],
            operator,
            notes=data.get("notes"),
        )
        return Response(WeighbridgeReadingSerializer(reading).data, status=status.HTTP_201_CREATED)


#
# ----------------------------------------------------------------------
# Buying Weight Notes
# ----------------------------------------------------------------------
#
class BuyingWeightNoteViewSet(_ListMixin, viewsets.GenericViewSet):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = BuyingWeightNoteSerializer

    def list(self, request):
        params = request.query_params
        qs = bwn.list_notes(
            search=params.get("search"),
            status=params.get("status"),
            coffee_type=params.get("coffeeType"),
            payment_status=params.get("paymentStatus"),
        )
        return self._list_response(qs, BuyingWeightNoteSerializer)

    def retrieve(self, request, pk=None):
        return Response(BuyingWeightNoteDetailSerializer(bwn.get_note(pk)).data)

    def create(self, request):
        data = _validated(BuyingWeightNoteCreateSerializer, request.data).validated_data
        note = bwn.create_note(
            data["weighbridgeReadingId"],
            data["coffeeType"],
            data["moistureContent"],
            data["pricePerKgUGX"],
            actor=request.user,
            outturn=data.get("outturn"),
            quality_analysis_no=data.get("qualityAnalysisNo"),
            buying_centre=data.get("buyingCentre"),
        )
        return Response(BuyingWeightNoteSerializer(note).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        data = _validated(BuyingWeightNoteUpdateSerializer, request.data).validated_data
        if not data:
            raise ValidationError("Nothing to update")
        note = bwn.edit_note(
            pk,
            moisture_content=data.get("moistureContent"),
            price_per_kg=data.get("pricePerKgUGX"),
            coffee_type=data.get("coffeeType"),
            outturn=data.get("outturn"),
            quality_analysis_no=data.get("qualityAnalysisNo"),
            buying_centre=data.get("buyingCentre"),
            expected_version=data.get("expectedVersion"),
        )
        return Response(BuyingWeightNoteSerializer(note).data)

    @action(detail=True, methods=["post"], url_path="transition")
    def transition(self, request, pk=None):
        data = _validated(TransitionSerializer, request.data).validated_data
        note = bwn.transition(
            pk,
            data["to"],
            reason=data.get("reason"),
            actor=request.user,
            expected_status=data.get("expectedStatus"),
        )
        return Response(BuyingWeightNoteSerializer(note).data)

    @action(detail=True, methods=["post"], url_path="qc-outcome")
    def qc_outcome(self, request, pk=None):
        ser = _validated(QCOutcomeSerializer, request.data)
        data = ser.validated_data
        note = bwn.record_qc_outcome(
            pk,
            data["outcome"],
            borderline_accepted=data.get("borderlineAccepted", False),
            inspector=request.user,
            defect_count=data.get("defectCount", 0),
            **ser.measurements(),
        )
        return Response(BuyingWeightNoteDetailSerializer(note).data)

    @action(detail=True, methods=["post"], url_path="confirm-payment")
    def confirm_payment(self, request, pk=None):
        note = bwn.confirm_payment(pk, actor=request.user)
        return Response(BuyingWeightNoteSerializer(note).data)

    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        s = bwn.note_stats()
        return Response(
            {
                "totalBWNs": s["total_bwns"],
                "pendingBWNs": s["pending_bwns"],
                "completedBWNs": s["completed_bwns"],
                "totalAmountUGX": str(s["total_amount_ugx"]),
                "arabicaCount": s["arabica_count"],
                "robustaCount": s["robusta_count"],
            }
        )


#
# ----------------------------------------------------------------------
# Traders
# ----------------------------------------------------------------------
#
class TraderViewSet(_ListMixin, viewsets.GenericViewSet):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = TraderSerializer

    def list(self, request):
        params = request.query_params
        qs = traders.list_traders(
            search=params.get("search"),
            status=params.get("status"),
            include_inactive=_flag(params.get("includeInactive", "")),
        )
        return self._list_response(qs, TraderSerializer)

    def retrieve(self, request, pk=None):
        return Response(TraderSerializer(traders.get_trader(pk)).data)

    def create(self, request):
        data = dict(_validated(TraderSerializer, request.data).validated_data)
        terms = data.pop("payment_terms", None)
        trader = traders.register_trader(data.pop("name"), data.pop("phone_number"), **data)
        if terms:
            trader = traders.update_trader(trader.pk, payment_terms=terms)
        return Response(TraderSerializer(trader).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        data = dict(_validated(TraderSerializer, request.data, partial=True).validated_data)
        new_status = data.pop("status", None)
        terms = data.pop("payment_terms", None)
        trader = traders.update_trader(pk, payment_terms=terms, **data)
        if new_status is not None:
            trader = traders.set_status(pk, new_status)
        return Response(TraderSerializer(trader).data)

    def destroy(self, request, pk=None):
        traders.deactivate(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="status")
    def set_status(self, request, pk=None):
        data = _validated(TraderStatusSerializer, request.data).validated_data
        trader = traders.set_status(pk, data["status"])
        return Response(TraderSerializer(trader).data)

    @action(detail=True, methods=["get"], url_path="performance")
    def performance(self, request, pk=None):
        perf = performance.current_performance(pk)
        return Response(TraderPerformanceSerializer(perf).data)
