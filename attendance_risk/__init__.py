"""Attendance risk scoring and intervention tracking."""
