"""
Shared models, exceptions and logging for the tax service client.
"""
