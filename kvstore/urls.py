from django.urls import path

from kvstore.exceptions import ERROR_STATUS
from kvstore.views import HealthCheckView, LatestValueView, MetricsView, ValueVersionView

app_name = "kvstore"

urlpatterns = [
    path(
        "token/<str:token>/key/<str:key>",
        LatestValueView.as_view(error_status=ERROR_STATUS),
        name="value-latest",
    ),
    path(
        "token/<str:token>/key/<str:key>/version/<str:version>",
        ValueVersionView.as_view(error_status=ERROR_STATUS),
        name="value-version",
    ),
    path("health/", HealthCheckView.as_view(), name="health"),
    path("metrics/", MetricsView.as_view(), name="metrics"),
]
