"""
Idempotency key generation utilities.

Idempotency keys make a client retry of a recorded sale, purchase or posting
return the original row instead of writing a second one.
"""

from uuid import UUID


def generate_idempotency_key(
    producer: str,
    event_type: str,
    event_id: UUID | str,
) -> str:
    """
    Generate an idempotency key.

    Format: producer:event_type:event_id

    The key is stored on the Document or JournalEntry and has a unique
    constraint.

    Example:
        >>> generate_idempotency_key("sales", "sale.recorded", f"{business_id}/SAL-000001")
        "sales:sale.recorded:550e8400-e29b-41d4-a716-446655440000/SAL-000001"
    """
    return f"{producer}:{event_type}:{event_id}"


def document_idempotency_key(document_type: str, business_id: UUID, document_number: str) -> str:
    """Key under which a recorded document of the given type is deduplicated."""
    producer = "sales" if document_type == "sale" else f"{document_type}s"
    return generate_idempotency_key(
        producer, f"{document_type}.recorded", f"{business_id}/{document_number}"
    )


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Parse an idempotency key into its components.

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]
