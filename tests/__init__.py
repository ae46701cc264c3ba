"""Tests for image-sync."""
