"""Counter store compliance tests.

Every counter store must pass these tests. Infrastructure-backed stores are
included when listed in the COMPLIANCE_ENGINES environment variable.
"""
