"""WSGI config for the VHC workflow project."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "vhc.settings")

application = get_wsgi_application()
