"""
Idempotency utilities

Builds the keys sent to the payment processor so a retried request is
recognized as the same request.
Rule: iw-{operation}-{reference}
"""

# Importal Wallet idempotency key prefix
IDEMPOTENCY_PREFIX: str = "iw"


def make_idempotency_key(operation: str, reference: str) -> str:
    """Deterministic idempotency key

    Args:
        operation: operation name (payout, refund, intent)
        reference: caller-unique reference (user/transaction/request id)

    Returns:
        iw-{operation}-{reference}

    Example:
        >>> make_idempotency_key("refund", "pi_123")
        'iw-refund-pi_123'
    """
    if not operation:
        raise ValueError("operation must not be empty")
    if not reference:
        raise ValueError("reference must not be empty")

    return f"{IDEMPOTENCY_PREFIX}-{operation}-{reference}"


def parse_idempotency_key(key: str) -> tuple[str, str] | None:
    """Split an idempotency key into (operation, reference)

    Example:
        >>> parse_idempotency_key("iw-refund-pi_123")
        ('refund', 'pi_123')
        >>> parse_idempotency_key("other-12345")
        None
    """
    if not key:
        return None

    prefix = f"{IDEMPOTENCY_PREFIX}-"
    if not key.startswith(prefix):
        return None

    operation, sep, reference = key[len(prefix):].partition("-")
    if not sep or not operation or not reference:
        return None

    return operation, reference


def normalize_reference(reference: str | None) -> str | None:
    """Strip an external reference; blank becomes None"""
    if reference is None:
        return None
    reference = reference.strip()
    return reference or None
