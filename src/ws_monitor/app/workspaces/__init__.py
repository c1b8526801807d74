"""
Workspace monitoring building blocks: detection, compose generation, watching,
container runtime access, and reconciliation.
"""
