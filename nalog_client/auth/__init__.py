"""
Authentication package for the tax service client.

This package contains the credential store, the single-flight authenticator
and secure session storage.
"""
