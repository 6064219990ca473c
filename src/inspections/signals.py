"""Workflow events raised by the item aggregator.

Receivers live in ``models.py`` so they are connected as soon as the
app registry loads.
"""

from django.dispatch import Signal

# Sent with ``job`` and ``item`` when a labour or parts line is added.
pricing_started = Signal()
