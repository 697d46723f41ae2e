"""Gmail message source.

Provides:
- Gmail REST client with retry logic and error handling
- Token providers for bearer credentials
- MIME body extraction into ExtractedEmail records

Usage:
    from notifier.mail import ContentExtractor, EnvTokenProvider, GmailClient

    client = GmailClient(EnvTokenProvider())
    extractor = ContentExtractor()
    emails = [extractor.extract_email(client.get_message(i)) for i in client.list_unread_ids()]
"""

from notifier.mail.client import EnvTokenProvider, GmailClient, TokenProvider
from notifier.mail.extractor import ContentExtractor, ExtractedEmail, Sender

__all__ = [
    # Client
    "GmailClient",
    "TokenProvider",
    "EnvTokenProvider",
    # Extraction
    "ContentExtractor",
    "ExtractedEmail",
    "Sender",
]
