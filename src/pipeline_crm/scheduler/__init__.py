"""Interval schedules for agent runs."""
