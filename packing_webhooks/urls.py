from django.urls import path

from .views import (
    AssortmentImagesView,
    AssortmentView,
    BatchImageDeleteView,
    CacheCleanupView,
    CacheInvalidateView,
    CacheStatsView,
    HealthView,
    IndividualAssortmentWebhookView,
    RecentWebhooksView,
    SalesOrderWebhookView,
    SaveAssortmentView,
    SingleImageDeleteView,
    UploadedImageView,
    WebhookDataView,
    WebhookStatsView,
)

urlpatterns = [
    path(
        "packing-instruction/<str:order_name>",
        SalesOrderWebhookView.as_view(),
        name="packing_sales_order_webhook",
    ),
    path(
        "individual-assortment/<str:assortment_id>",
        IndividualAssortmentWebhookView.as_view(),
        name="packing_individual_assortment_webhook",
    ),
    path(
        "assortment/save",
        SaveAssortmentView.as_view(),
        name="packing_assortment_save",
    ),
    path(
        "data/<str:order_name>",
        WebhookDataView.as_view(),
        name="packing_webhook_data",
    ),
    path(
        "assortment/<str:assortment_id>",
        AssortmentView.as_view(),
        name="packing_assortment",
    ),
    path(
        "assortment/<str:assortment_id>/images",
        AssortmentImagesView.as_view(),
        name="packing_assortment_images",
    ),
    path(
        "assortment/<str:assortment_id>/images/batch",
        BatchImageDeleteView.as_view(),
        name="packing_assortment_images_batch",
    ),
    path(
        "assortment/<str:assortment_id>/images/<str:filename>",
        SingleImageDeleteView.as_view(),
        name="packing_assortment_image",
    ),
    path(
        "pcf-images/<str:filename>",
        UploadedImageView.as_view(),
        name="packing_uploaded_image",
    ),
    path("stats", WebhookStatsView.as_view(), name="packing_webhook_stats"),
    path("recent", RecentWebhooksView.as_view(), name="packing_recent_webhooks"),
    path(
        "recent/<int:limit>",
        RecentWebhooksView.as_view(),
        name="packing_recent_webhooks_limit",
    ),
    path("cache/stats", CacheStatsView.as_view(), name="packing_cache_stats"),
    path("cache", CacheCleanupView.as_view(), name="packing_cache_cleanup"),
    path(
        "cache/<str:assortment_id>",
        CacheInvalidateView.as_view(),
        name="packing_cache_invalidate",
    ),
    path("health", HealthView.as_view(), name="packing_health"),
]
