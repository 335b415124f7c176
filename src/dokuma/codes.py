"""Entity code generation."""

import random


def generate_fabric_code(name: str, *, rng: random.Random | None = None) -> str:
    """Build a fabric type code in the form KMS-XX-NNNN.

    XX are the initials of the first two words of name, padded with "T".
    NNNN is random, so uniqueness is left to the server.

    Example:
        generate_fabric_code("pamuklu mikro")  # "KMS-PM-4821"
        generate_fabric_code("Viskon")         # "KMS-VT-1093"
    """
    rng = rng or random.Random()
    initials = "".join(word[0] for word in name.split() if word).upper()[:2]
    prefix = (initials + "TT")[:2]
    return f"KMS-{prefix}-{rng.randint(1000, 9999)}"
