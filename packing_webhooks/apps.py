from django.apps import AppConfig


class PackingWebhooksConfig(AppConfig):
    name = "packing_webhooks"
    verbose_name = "Packing Instruction Webhooks"
    default_auto_field = "django.db.models.AutoField"
