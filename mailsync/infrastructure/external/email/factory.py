"""Mail provider factory for instantiating providers and parsers"""
from typing import ClassVar

from mailsync.application.interfaces.providers import (IMailProvider,
                                                       IMessageParser)
from mailsync.domain.exceptions import UnsupportedProviderError
from mailsync.infrastructure.external.email.parser import GmailMessageParser
from mailsync.infrastructure.external.email.providers.gmail_provider import \
    GmailProvider
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class MailProviderFactory:
    """Registry of sync-capable providers keyed by provider type"""

    _providers: ClassVar[dict[str, tuple[type, type]]] = {
        "gmail": (GmailProvider, GmailMessageParser),
    }

    def supports(self, provider_type: str) -> bool:
        return provider_type.lower() in self._providers

    def create_provider(self, provider_type: str, access_token: str) -> IMailProvider:
        """
        Create a provider bound to ``access_token``.

        Raises:
            UnsupportedProviderError: If provider_type has no registered provider
        """
        provider_class, _ = self._lookup(provider_type)
        return provider_class(access_token)

    def create_parser(self, provider_type: str) -> IMessageParser:
        _, parser_class = self._lookup(provider_type)
        return parser_class()

    def _lookup(self, provider_type: str) -> tuple[type, type]:
        entry = self._providers.get(provider_type.lower())
        if entry is None:
            raise UnsupportedProviderError(provider_type)
        return entry

    @classmethod
    def register_provider(
        cls, provider_type: str, provider_class: type, parser_class: type
    ) -> None:
        """
        Register an additional provider.

        Args:
            provider_type: Provider type identifier (e.g., 'outlook')
            provider_class: Class taking an access token and implementing IMailProvider
            parser_class: Class implementing IMessageParser for that provider's payloads
        """
        cls._providers[provider_type.lower()] = (provider_class, parser_class)
        logger.info("Registered mail provider: %s", provider_type)

    @classmethod
    def list_supported_providers(cls) -> list[str]:
        """Get list of supported provider types"""
        return list(cls._providers.keys())
