"""
HTTP surface of the directory.
"""
