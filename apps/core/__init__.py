"""
Shared infrastructure: base model, errors, logging, permissions, tasks.
"""
