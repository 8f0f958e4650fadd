"""Test suite for zai-adapter."""
