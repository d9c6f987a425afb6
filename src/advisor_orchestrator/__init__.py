"""Task orchestration service for an advisor-facing email/calendar/CRM assistant."""

__version__ = "0.1.0"
