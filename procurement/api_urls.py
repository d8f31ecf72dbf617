from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register("truck-entries", views.TruckEntryViewSet, basename="truck-entry")
router.register("weighbridge-readings", views.WeighbridgeReadingViewSet, basename="weighbridge-reading")
router.register("buying-weight-notes", views.BuyingWeightNoteViewSet, basename="buying-weight-note")
router.register("traders", views.TraderViewSet, basename="trader")

urlpatterns = router.urls
