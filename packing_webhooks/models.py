from django.db import models


class ReceiptStatus(models.TextChoices):
    RECEIVED = "received"
    PROCESSED = "processed"
    ERROR = "error"


class WebhookOrder(models.Model):
    """One sales-order webhook delivery. Re-deliveries overwrite in place."""

    Status = ReceiptStatus

    order_name = models.CharField(max_length=255)
    sales_order = models.JSONField(default=dict, blank=True)
    assortments = models.JSONField(default=list, blank=True)
    # "|itemNo:A000404|id:2113|..." so that embedded assortments can be
    # searched with a plain substring lookup on any database backend.
    assortment_keys = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.RECEIVED
    )
    received_at = models.DateTimeField(db_index=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "packing_webhook_order"
        indexes = [
            models.Index(fields=["status"], name="packing_order_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order_name"], name="unique_webhook_order_name"
            ),
        ]

    def __str__(self):
        return f"{self.order_name} [{self.status}]"


class IndividualAssortment(models.Model):
    """A standalone copy of one assortment, addressable by its item number.

    ``assortment_data`` holds the webhook-sourced assortment plus the
    ``userModifications`` layered on top of it.
    """

    Status = ReceiptStatus

    assortment_id = models.CharField(max_length=64)
    assortment_data = models.JSONField(default=dict)
    source_order_name = models.CharField(max_length=255, blank=True, default="")
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.RECEIVED
    )
    received_at = models.DateTimeField(db_index=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True, default="")
    access_count = models.PositiveIntegerField(default=0)
    last_accessed_at = models.DateTimeField(null=True, blank=True)
    current_version = models.PositiveIntegerField(default=1)
    version_history = models.JSONField(default=list, blank=True)
    cache_key = models.CharField(max_length=255, blank=True, default="")
    last_cache_update = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    performance_metrics = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "packing_individual_assortment"
        indexes = [
            models.Index(fields=["status"], name="packing_assort_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["assortment_id"], name="unique_individual_assortment_id"
            ),
        ]

    def __str__(self):
        return f"{self.assortment_id} (v{self.current_version})"

    @property
    def user_modifications(self):
        return (self.assortment_data or {}).get("userModifications") or {}
