"""SMB2 client building blocks: NTLMv2 authentication and session security, AES-CCM and wildcard matching."""

__version__ = "0.1.0"