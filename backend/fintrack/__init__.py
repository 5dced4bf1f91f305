"""Fintrack backend: identity and tenant isolation for a personal finance tracker."""
