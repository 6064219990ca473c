"""URL configuration for the VHC workflow project."""

from django.contrib import admin
from django.urls import include, path

from vhc.views import health_check

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("", include("inspections.urls")),
]
