"""
LearnMap client.

Authenticated request pipeline and learning/progress API wrappers for the
LearnMap map front end.
"""

__version__ = "1.0.0"
