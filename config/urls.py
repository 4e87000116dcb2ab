from django.contrib import admin
from django.urls import path

from giveaways.views import job_status_view

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/jobs/status/", job_status_view),
]
