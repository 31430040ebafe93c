from django.contrib import admin

from .models import IndividualAssortment, WebhookOrder


@admin.register(WebhookOrder)
class WebhookOrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_name",
        "status",
        "assortment_count",
        "total_images",
        "received_at",
        "processed_at",
    )
    list_filter = ("status",)
    search_fields = ("order_name",)
    readonly_fields = ("assortment_keys", "created_at", "updated_at")
    date_hierarchy = "received_at"
    ordering = ("-received_at",)

    @admin.display(description="Assortments")
    def assortment_count(self, obj):
        return len(obj.assortments or [])

    @admin.display(description="Images")
    def total_images(self, obj):
        return (obj.metadata or {}).get("totalImages", 0)


@admin.register(IndividualAssortment)
class IndividualAssortmentAdmin(admin.ModelAdmin):
    list_display = (
        "assortment_id",
        "source_order_name",
        "status",
        "current_version",
        "access_count",
        "last_accessed_at",
    )
    list_filter = ("status",)
    search_fields = (
        "assortment_id",
        "source_order_name",
    )
    readonly_fields = (
        "cache_key",
        "version_history",
        "performance_metrics",
        "created_at",
        "updated_at",
    )
    date_hierarchy = "received_at"
    ordering = ("-received_at",)
