"""
Static data: config templates for the managed files.
"""
