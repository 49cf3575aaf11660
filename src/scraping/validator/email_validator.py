import re

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# Common disposable/temp email domains
DISPOSABLE_DOMAINS = {
    "mailinator.com",
    "guerrillamail.com",
    "tempmail.com",
    "throwaway.email",
    "temp-mail.org",
    "10minutemail.com",
    "yopmail.com",
    "sharklasers.com",
}

# Image names like logo@2x.png look like addresses to a regex
ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")

PLACEHOLDER_DOMAINS = {"domain.com", "email.com", "yourdomain.com", "sentry.io"}


def is_valid_email(email: str) -> bool:
    """Format check that also rejects disposable, placeholder and asset-name hits."""
    if not email or not EMAIL_PATTERN.match(email):
        return False

    lowered = email.lower()
    if lowered.endswith(ASSET_SUFFIXES):
        return False

    domain = lowered.split("@")[1]
    if domain in DISPOSABLE_DOMAINS or domain in PLACEHOLDER_DOMAINS:
        return False

    return not domain.startswith(".") and ".." not in domain
