"""
Secret value masking.

Values produced by sensitive lookups (the OS keyring) are remembered here and
replaced with '***' wherever they would otherwise reach log output.
"""

import logging
import re
from typing import Any, Dict, Set


class SecretsManager:
    """
    Tracks secret values and masks them in text and structures.

    One manager is shared by the lookup registry (which records values) and
    the logging filter (which masks them).
    """

    def __init__(self):
        """Initialize secrets manager."""
        self._masked_values: Set[str] = set()

    def add(self, value: Any) -> None:
        """Remember a secret value for masking. Empty values are ignored."""
        if value is None:
            return
        text = str(value)
        if text:
            self._masked_values.add(text)

    def mask_text(self, text: str) -> str:
        """
        Mask known secret values in text.

        Args:
            text: Text potentially containing secrets

        Returns:
            Text with secrets masked
        """
        if not text or not self._masked_values:
            return text

        masked = text
        # Longer values first so substrings of a secret are not left behind
        for secret_value in sorted(self._masked_values, key=len, reverse=True):
            if secret_value in masked:
                masked = re.sub(re.escape(secret_value), '***', masked)

        return masked

    def mask_value(self, value: Any) -> Any:
        """Recursively mask secrets in strings, mappings and lists."""
        if not self._masked_values:
            return value
        if isinstance(value, str):
            return self.mask_text(value)
        if isinstance(value, dict):
            return {k: self.mask_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.mask_value(v) for v in value)
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask secrets in a dictionary (for results and summaries)."""
        if not data:
            return data
        return self.mask_value(data)

    def clear_masked_values(self):
        """Clear the set of values to mask (useful for testing)."""
        self._masked_values.clear()


class SecretsMaskingFilter(logging.Filter):
    """
    Logging filter for masking secrets in log records.

    Attached to the CLI's log handler so every record is masked before output.
    """

    def __init__(self, secrets_manager: SecretsManager):
        super().__init__()
        self.secrets_manager = secrets_manager

    def filter(self, record: logging.LogRecord) -> bool:
        """Mask the message and its arguments; always pass the record through."""
        if hasattr(record, 'msg'):
            record.msg = self.secrets_manager.mask_text(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = self.secrets_manager.mask_dict(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self.secrets_manager.mask_text(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        return True
