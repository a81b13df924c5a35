"""Example suite for the task manager application."""
