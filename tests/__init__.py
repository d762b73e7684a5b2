"""Tests for dracanus."""
