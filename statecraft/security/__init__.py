"""Security module for secret masking."""

from .secrets import SecretsManager, SecretsMaskingFilter

__all__ = ['SecretsManager', 'SecretsMaskingFilter']
