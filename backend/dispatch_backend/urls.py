from django.contrib import admin
from django.urls import path, include
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .views import health_check

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", health_check),  # Health check endpoint

    # Token endpoints; account management lives in another service
    path("api/auth/token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("api/auth/token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),

    # Ride dispatch & lifecycle APIs
    path("api/rides/", include("rides.urls")),
]
