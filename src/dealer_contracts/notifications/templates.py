"""Message templates for signing-link delivery."""

from dataclasses import dataclass
from string import Template
from typing import Any, Dict

from ..contracts.exceptions import ValidationError


@dataclass
class MessageTemplate:
    """A signing-link message with email and short-text variants."""

    name: str
    subject: str
    body_text: str
    short_text: str
    max_short_length: int = 320

    def render(self, context: Dict[str, Any]) -> Dict[str, str]:
        """Render the template with context variables."""
        # Missing variables are left in place rather than raising
        subject = Template(self.subject).safe_substitute(context)
        body_text = Template(self.body_text).safe_substitute(context)
        short_text = Template(self.short_text).safe_substitute(context)

        if len(short_text) > self.max_short_length:
            # Keep the link intact; trim the greeting instead.
            link = str(context.get("signing_url", ""))
            short_text = short_text[:self.max_short_length - len(link) - 4] + "... " + link

        return {
            "subject": subject,
            "body_text": body_text,
            "short_text": short_text,
        }


SIGNATURE_REQUEST = MessageTemplate(
    name="signature_request",
    subject="Please sign: $contract_name",
    body_text="""Hi $signer_name,

$dealer_name has sent you "$contract_name" to review and sign.

Open the document and sign here:
$signing_url

This link is personal to you and expires on $expires_at.
If you were not expecting this document, you can ignore this message.
""",
    short_text="Hi $signer_name, please review and sign \"$contract_name\": $signing_url",
)

SIGNATURE_REMINDER = MessageTemplate(
    name="signature_reminder",
    subject="Reminder: $contract_name is waiting for your signature",
    body_text="""Hi $signer_name,

This is a reminder that "$contract_name" is still waiting for your signature.

Open the document and sign here:
$signing_url

The link expires on $expires_at.
""",
    short_text="Reminder: \"$contract_name\" is waiting for your signature: $signing_url",
)

TEMPLATES: Dict[str, MessageTemplate] = {
    t.name: t for t in (SIGNATURE_REQUEST, SIGNATURE_REMINDER)
}


def get_template(name: str) -> MessageTemplate:
    template = TEMPLATES.get(name)
    if template is None:
        raise ValidationError(f"Unknown notification template: {name}", field="template")
    return template
