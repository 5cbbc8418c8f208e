"""Tests for candle providers, setup detection, replay and optimization."""
