"""Proposal and approval of agent actions."""
