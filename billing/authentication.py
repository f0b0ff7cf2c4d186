"""
Token authentication for the billing API.

Kept apart from the login views so that DRF can import the
authentication classes listed in settings without pulling in view
modules (and, through them, the models) during start-up.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """``Authorization: Token <key>`` authentication.

    Clients that prefer JWT send ``Authorization: Bearer <access>``
    instead; both classes are enabled in ``REST_FRAMEWORK``.
    """

    keyword = 'Token'
