"""AWS Bootstrap Automation - Main Package.

This package creates or safely upgrades the bootstrap stack that a
deployment tool needs in an AWS account and region.
"""

__version__ = "1.0.0"
__author__ = "AWS Bootstrap Automation Team"
