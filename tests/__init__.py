"""
Test suite for familyvault.

This module contains all test cases for the project:
- Unit tests for models, storage, services and the admin CLI
- Integration tests for complete gallery workflows
"""
