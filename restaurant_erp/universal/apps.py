from django.apps import AppConfig


class UniversalConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'restaurant_erp.universal'
    label = 'universal'
