import re
from typing import Optional

from email_validator import validate_email, EmailNotValidError


class ValidationUtils:
    """
    Validation helpers shared by the repositories.

    Kept free of database access so they can run before anything is written.
    """

    PATTERNS = {
        'session_id': re.compile(r'^[A-Za-z0-9._-]{8,128}$'),
    }

    @classmethod
    def validate_email(cls, email: str, check_deliverability: bool = False) -> bool:
        """Syntax check (and optional DNS check) of an email address"""
        if not email:
            return False
        try:
            validate_email(email, check_deliverability=check_deliverability)
            return True
        except EmailNotValidError:
            return False

    @classmethod
    def normalize_email(cls, email: str) -> str:
        """Lower-case and strip an address"""
        return email.strip().lower() if email else email

    @classmethod
    def validate_session_id(cls, session_id: Optional[str]) -> bool:
        """Guest cart session ids: 8-128 chars of [A-Za-z0-9._-]"""
        if not session_id:
            return False
        return bool(cls.PATTERNS['session_id'].match(session_id))

    @classmethod
    def slugify(cls, name: str) -> str:
        """'Limited Edition ' -> 'limited-edition'"""
        return name.strip().lower().replace(" ", "-")

    @classmethod
    def sanitize_text(cls, text: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
        """Collapse whitespace and optionally truncate"""
        if text is None:
            return None
        cleaned = re.sub(r'\s+', ' ', text).strip()
        if max_length and len(cleaned) > max_length:
            cleaned = cleaned[:max_length]
        return cleaned
