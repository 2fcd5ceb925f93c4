from django.apps import AppConfig


class KVStoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "kvstore"
    verbose_name = "Versioned key-value store"
