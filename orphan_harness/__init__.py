"""Crash-consistency oracle for the persistent orphan queue."""
