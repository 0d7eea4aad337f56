"""Chat bot sign-in that links a conversation to an Entra ID login with a magic code."""

__version__ = "0.1.0"
