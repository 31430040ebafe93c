# Generated manually for packing_webhooks app

from django.db import migrations, models

STATUS_CHOICES = [
    ("received", "Received"),
    ("processed", "Processed"),
    ("error", "Error"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="WebhookOrder",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("order_name", models.CharField(max_length=255)),
                ("sales_order", models.JSONField(blank=True, default=dict)),
                ("assortments", models.JSONField(blank=True, default=list)),
                ("assortment_keys", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=STATUS_CHOICES, default="received", max_length=20
                    ),
                ),
                ("received_at", models.DateTimeField(db_index=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "packing_webhook_order",
                "indexes": [
                    models.Index(
                        fields=["status"],
                        name="packing_order_status_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("order_name",),
                        name="unique_webhook_order_name",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="IndividualAssortment",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("assortment_id", models.CharField(max_length=64)),
                ("assortment_data", models.JSONField(default=dict)),
                (
                    "source_order_name",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "status",
                    models.CharField(
                        choices=STATUS_CHOICES, default="received", max_length=20
                    ),
                ),
                ("received_at", models.DateTimeField(db_index=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                ("access_count", models.PositiveIntegerField(default=0)),
                ("last_accessed_at", models.DateTimeField(blank=True, null=True)),
                ("current_version", models.PositiveIntegerField(default=1)),
                ("version_history", models.JSONField(blank=True, default=list)),
                ("cache_key", models.CharField(blank=True, default="", max_length=255)),
                ("last_cache_update", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("performance_metrics", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "packing_individual_assortment",
                "indexes": [
                    models.Index(
                        fields=["status"],
                        name="packing_assort_status_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("assortment_id",),
                        name="unique_individual_assortment_id",
                    ),
                ],
            },
        ),
    ]
