"""Multi-tenant appointment booking over Microsoft Graph calendars."""

__version__ = "1.0.0"
