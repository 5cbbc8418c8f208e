"""Tests for order routing, execution guards and child-order algorithms."""
