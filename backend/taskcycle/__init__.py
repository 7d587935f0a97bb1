"""Recurring-task scheduling engine and its task service."""

__version__ = "0.1.0"
