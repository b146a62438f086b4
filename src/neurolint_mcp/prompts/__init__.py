"""Prompt templates for code review and fix suggestions."""
