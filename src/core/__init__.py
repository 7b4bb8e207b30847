"""Core domain package for the constellation engine.

Core owns the working set, the message pool cursors, and cluster selection
without any database or rendering code, keeping the traversal logic portable.
"""
