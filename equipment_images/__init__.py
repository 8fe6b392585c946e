"""
Equipment image pipeline for the broadcast equipment knowledge base.

Finds and stores a representative product photo for equipment records.
"""
