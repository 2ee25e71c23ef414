"""
clpool command line interface.
"""
