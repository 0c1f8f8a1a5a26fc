"""Leaf convergence components: repository, packages, config files, services, health."""
