"""OAuth access-token lifecycle for Gmail API calls."""

from .tokens import RefreshedToken, TokenManager

__all__ = ["RefreshedToken", "TokenManager"]
