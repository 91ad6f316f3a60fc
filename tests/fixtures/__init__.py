"""
Fixtures package for the resultsync test suite.

This package provides reusable fixtures and test data factories
to standardize the approach to testing throughout the project.
"""
