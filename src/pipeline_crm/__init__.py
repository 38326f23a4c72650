"""Pipeline CRM automation layer: events, schedules, agents, and approvals."""

__version__ = "0.1.0"
