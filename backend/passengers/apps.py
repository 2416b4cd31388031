from django.apps import AppConfig


class PassengersConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'passengers'
