"""
larashield
==========
Tree-sitter based security analyzers for Laravel applications.
"""

__version__ = "1.0.0"
