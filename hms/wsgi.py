"""
WSGI config for the hms project.

It exposes the WSGI callable as a module-level variable named
``application``.  Payment websockets need the ASGI entrypoint in
``hms.asgi``; plain HTTP deployments can use this one.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'hms.settings')

application = get_wsgi_application()
