"""Core domain models for notification specifications and outgoing messages.

This module defines the data structures used throughout the pipeline:
- NotificationSpecification: how one notification type is rendered and addressed
- RecipientGroup / Recipient: the addressing tree owned by a specification
- MailAddress: an address with an optional display name
- Attachment: binary content attached to a single send
- RenderedMessage: the per-send artifact handed to the SMTP transport

Specifications and recipients are immutable snapshots; RenderedMessage is
created fresh for every send and filled in by the orchestrator.
"""

from email.utils import formataddr
from enum import Enum
from typing import List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PRIORITY = 3


def normalize_address(value: str) -> str:
    """Validate an email address and return its normalized form.

    Raises:
        ValueError: If the address is not a syntactically valid email address
    """
    candidate = (value or "").strip()
    if not candidate:
        raise ValueError("Email address cannot be empty")
    try:
        validated = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email address '{candidate}': {e}") from e
    return validated.normalized


def _strip_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class RecipientRole(str, Enum):
    """Header a recipient is addressed in."""

    TO = "to"
    CC = "cc"
    BCC = "bcc"


class MailAddress(BaseModel):
    """An email address with an optional display name."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., description="Email address")
    display_name: Optional[str] = Field(None, description="Human-readable name")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return normalize_address(v)

    @field_validator("display_name")
    @classmethod
    def strip_display_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    def formatted(self) -> str:
        """Render as an RFC 5322 mailbox (``Name <addr>`` or bare ``addr``)."""
        return formataddr((self.display_name or "", self.address))

    def __str__(self) -> str:
        return self.formatted()


class Recipient(BaseModel):
    """One addressee of a notification.

    Addresses compare case-insensitively through ``identity``; the stored
    address keeps the casing it was configured with.
    """

    model_config = ConfigDict(frozen=True)

    email_address: str = Field(..., description="Recipient email address")
    display_name: Optional[str] = Field(None, description="Recipient display name")
    role: RecipientRole = Field(RecipientRole.TO, description="To, Cc or Bcc")

    @field_validator("email_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return normalize_address(v)

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v):
        # Specification files write roles as "To", "CC", "Bcc"
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("display_name")
    @classmethod
    def strip_display_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    @property
    def identity(self) -> Tuple[str, RecipientRole]:
        """Case-insensitive (address, role) pair."""
        return (self.email_address.lower(), self.role)

    def to_mail_address(self) -> MailAddress:
        return MailAddress(address=self.email_address, display_name=self.display_name)


class RecipientGroup(BaseModel):
    """Named set of recipients, e.g. "Finance Team"."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Group name")
    description: Optional[str] = Field(None, description="What the group is for")
    recipients: Tuple[Recipient, ...] = Field(default_factory=tuple)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Group name cannot be empty or whitespace-only")
        return stripped


class NotificationSpecification(BaseModel):
    """Snapshot describing how to render and address one notification type.

    Subject, HTML body and sender address must be non-empty and priority must
    lie in [1, 5] (1 highest); violations fail at construction time.
    """

    model_config = ConfigDict(frozen=True)

    notification_type: str = Field(..., min_length=1, description="Stable notification-type key")
    name: Optional[str] = Field(None, description="Human-readable specification name")
    subject: str = Field(..., description="Subject line")
    html_body: str = Field(..., description="HTML body template text")
    text_body: Optional[str] = Field(None, description="Plain-text alternative body")
    from_address: str = Field(..., description="Sender address")
    from_name: Optional[str] = Field(None, description="Sender display name")
    reply_to_address: Optional[str] = Field(None, description="Reply-To address")
    priority: int = Field(DEFAULT_PRIORITY, ge=1, le=5, description="1 (highest) to 5 (lowest)")
    is_active: bool = Field(True, description="Inactive specifications still send, with a warning")
    recipient_groups: Tuple[RecipientGroup, ...] = Field(default_factory=tuple)

    @field_validator("notification_type")
    @classmethod
    def strip_type(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("notification_type cannot be empty or whitespace-only")
        return stripped

    @field_validator("subject", "html_body")
    @classmethod
    def require_content(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field cannot be empty or whitespace-only")
        return v

    @field_validator("from_address")
    @classmethod
    def validate_from(cls, v: str) -> str:
        return normalize_address(v)

    @field_validator("reply_to_address")
    @classmethod
    def validate_reply_to(cls, v: Optional[str]) -> Optional[str]:
        stripped = _strip_optional(v)
        return normalize_address(stripped) if stripped else None

    @field_validator("from_name")
    @classmethod
    def strip_from_name(cls, v: Optional[str]) -> Optional[str]:
        return _strip_optional(v)

    def iter_recipients(self):
        """Yield every recipient of every group, in declaration order."""
        for group in self.recipient_groups:
            yield from group.recipients

    @property
    def sender(self) -> MailAddress:
        return MailAddress(address=self.from_address, display_name=self.from_name)

    @property
    def reply_to(self) -> Optional[MailAddress]:
        if self.reply_to_address is None:
            return None
        return MailAddress(address=self.reply_to_address)


class Attachment(BaseModel):
    """Binary content attached to one send."""

    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., min_length=1, description="File name shown to the recipient")
    content: bytes = Field(..., description="Raw file content")
    content_type: str = Field("application/octet-stream", description="MIME type, e.g. text/csv")
    is_inline: bool = Field(False, description="Display inline in the body")
    content_id: Optional[str] = Field(None, description="Content-ID for inline references")

    @property
    def size(self) -> int:
        return len(self.content)


class RenderedMessage(BaseModel):
    """Fully rendered message for one send call.

    Built by the orchestrator, then treated as read-only by the transport.
    """

    subject: str
    html_body: str
    text_body: Optional[str] = None
    sender: MailAddress
    reply_to: Optional[MailAddress] = None
    priority: int = Field(DEFAULT_PRIORITY, ge=1, le=5)
    to: List[MailAddress] = Field(default_factory=list)
    cc: List[MailAddress] = Field(default_factory=list)
    bcc: List[MailAddress] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)

    def add_recipient(self, recipient: Recipient) -> None:
        """Append a recipient to the list matching its role."""
        target = {
            RecipientRole.TO: self.to,
            RecipientRole.CC: self.cc,
            RecipientRole.BCC: self.bcc,
        }[recipient.role]
        target.append(recipient.to_mail_address())

    def all_recipients(self) -> List[MailAddress]:
        """Envelope recipients: To, then Cc, then Bcc."""
        return [*self.to, *self.cc, *self.bcc]

    @property
    def recipient_count(self) -> int:
        return len(self.to) + len(self.cc) + len(self.bcc)

    def has_recipients(self) -> bool:
        return self.recipient_count > 0
