"""
Core Application - Infrastructure & Base Classes

This package holds infrastructure shared by domain apps. It carries no
domain logic of its own.

Exceptions (import from core.exceptions):
    - BaseApplicationError: Root of every application error, with a
      machine-readable error_code and a details dict for logging
"""
