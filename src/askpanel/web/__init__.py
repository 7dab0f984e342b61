"""Web view layer."""

from .api import create_app, set_askpanel_instance

__all__ = ["create_app", "set_askpanel_instance"]
