from django.apps import AppConfig


class SmartGroupsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "smartgroups"
    verbose_name = "Smart groups"

    def ready(self) -> None:
        from smartgroups import signals  # noqa: F401
