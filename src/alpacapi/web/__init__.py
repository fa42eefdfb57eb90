"""HTTP layer: the Alpaca REST API and setup pages."""

from alpacapi.web.app import alpaca_response, create_app

__all__ = ["alpaca_response", "create_app"]
