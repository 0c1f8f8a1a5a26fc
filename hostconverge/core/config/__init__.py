"""
Settings loading and the role catalog.
"""
