"""Shared libraries for the athlete support agent.

This package contains reusable components:
- common: Configuration and resilience helpers
"""
