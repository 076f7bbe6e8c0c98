"""
Reskin (rebranding) workflow.
"""
