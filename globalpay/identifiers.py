"""
Identifier Generation

Transaction ids and transfer references come from the operating system's
CSPRNG, never from the clock alone, so concurrent issuance cannot collide.
The two namespaces are kept apart by prefix.
"""

import secrets
import uuid


TRANSACTION_ID_PREFIX = "TXN"
REFERENCE_PREFIX = "REF"


class IdentifierGenerator:
    """Issues transaction ids (122 random bits) and references (80 random bits)"""

    reference_bytes = 10

    def new_transaction_id(self) -> str:
        return f"{TRANSACTION_ID_PREFIX}{uuid.uuid4().hex.upper()}"

    def new_reference(self) -> str:
        return f"{REFERENCE_PREFIX}{secrets.token_hex(self.reference_bytes).upper()}"
