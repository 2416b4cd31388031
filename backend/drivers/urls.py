from django.urls import path

from .views import DriverLocationUpdateView, DriverStatusView

urlpatterns = [
    path("availability/", DriverStatusView.as_view(), name="driver-availability"),
    path("location/", DriverLocationUpdateView.as_view(), name="driver-location"),
]
