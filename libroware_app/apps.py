from django.apps import AppConfig


class LibrowareAppConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'libroware_app'
    verbose_name = 'Libroware'
