"""
StealthPay - API Package
"""

from stealth_pay.api.rest_api import app, create_app, initialize_api

__all__ = ["app", "create_app", "initialize_api"]
