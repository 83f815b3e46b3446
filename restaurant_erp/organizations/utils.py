import re

from django.utils import timezone

from .models import Organization


def generate_org_code(org_name):
    """
    Build a unique organization code from its name

    "Mario's Pizza Place" -> "MARIOS-PIZZA-PLACE-20260105143000"
    """
    base = re.sub(r'\s+', '-', org_name.strip()).upper()
    base = re.sub(r'[^A-Z0-9-]', '', base).strip('-')[:60] or 'ORG'
    code = f"{base}-{timezone.now().strftime('%Y%m%d%H%M%S')}"

    candidate = code
    suffix = 1
    while Organization.objects.filter(org_code=candidate).exists():
        suffix += 1
        candidate = f"{code}-{suffix}"
    return candidate
