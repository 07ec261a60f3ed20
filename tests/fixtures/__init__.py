"""Shared test fixtures: sample diagrams and stand-in solvers."""
