from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LoginSelectors:
    """
    Portals change their markup over time; keep every login-form hook here.
    """

    # Tried in order, first match wins: semantic type, then name/id, then placeholder,
    # then any text input as a last resort.
    email_inputs: tuple[str, ...] = (
        'input[type="email"]',
        'input[name*="email" i]',
        'input[id*="email" i]',
        'input[placeholder*="email" i]',
        'input[autocomplete*="email" i]',
        'input[type="text"]',
        'input:not([type])',
    )
    # Events that client-side validation listens to before enabling submit.
    validation_events: tuple[str, ...] = ("input", "change", "blur")
    submit_labels: tuple[str, ...] = ("Send Link", "Send", "Continue", "Sign in", "Log in")
    # Wording seen after the portal accepts the email; used for logging only.
    link_sent_texts: tuple[str, ...] = ("check your email", "link has been", "sent")
