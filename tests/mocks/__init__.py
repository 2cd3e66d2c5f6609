"""Test doubles for the agent runtime."""
