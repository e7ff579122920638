"""
ASGI config for the Sentraexam project.

HTTP only; notification pushes go through the channel layer configured in
CHANNEL_LAYERS and are delivered by the notification transport service.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.local")

application = get_asgi_application()
