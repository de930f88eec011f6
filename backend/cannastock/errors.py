from typing import Optional


class CannastockError(Exception):
    pass


class SequenceExhaustedError(CannastockError):
    """A sequence key reached its maximum. Needs operator action, never retried."""

    def __init__(self, sequence_name: str, key: dict, max_sequence: int):
        self.sequence_name = sequence_name
        self.key = key
        self.max_sequence = max_sequence
        parts = ", ".join(f"{k}={v}" for k, v in key.items())
        super().__init__(
            f"{sequence_name} sequence exhausted for ({parts}): maximum {max_sequence} reached"
        )


class InvalidIdentifierError(CannastockError, ValueError):
    def __init__(self, kind: str, value: Optional[str], reason: str):
        self.kind = kind
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {kind} '{value}': {reason}")


class AuditFieldMissingError(CannastockError, ValueError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} is required")


class MovementsAlreadyGeneratedError(CannastockError):
    def __init__(self, transaction_type, header_id: int, existing: int):
        self.transaction_type = transaction_type
        self.header_id = header_id
        self.existing = existing
        super().__init__(
            f"Movements already generated for {transaction_type.name} #{header_id} ({existing} live)"
        )


class InvalidSerialTransitionError(CannastockError):
    def __init__(self, serial_number: str, current, target):
        self.serial_number = serial_number
        self.current = current
        self.target = target
        super().__init__(f"Serial {serial_number} cannot move from {current.name} to {target.name}")


class NotFoundError(CannastockError, LookupError):
    def __init__(self, entity: str, ident):
        self.entity = entity
        self.ident = ident
        super().__init__(f"{entity} {ident} not found")
