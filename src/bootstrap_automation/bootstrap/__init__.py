"""Bootstrap stack reconciliation.

This package reconciles the deployed bootstrap stack with a requested
configuration, validates the result, and deploys it with CloudFormation.
"""
