"""URLconf for the Chirrup site."""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("", include("chirrup.feeds.urls")),
    path("", include("chirrup.hubs.urls")),
    path("admin/", admin.site.urls),
]
