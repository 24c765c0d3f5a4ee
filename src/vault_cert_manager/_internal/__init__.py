"""
Modules internal to Vault Cert Manager.

This package contains modules that are not considered part of the public
API. They may be changed without updating the major version.
"""
