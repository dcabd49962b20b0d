"""
Shared components for the LearnMap client.

This package contains the exception hierarchy, logging configuration,
data models and interfaces used by the client packages.
"""
