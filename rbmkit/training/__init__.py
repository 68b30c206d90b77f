"""Trainers, watchers and optimisation contexts for RBM layers."""
