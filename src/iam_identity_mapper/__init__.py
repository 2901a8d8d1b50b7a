"""Map verified AWS IAM principals to Kubernetes usernames and groups."""

__version__ = "0.1.0"
