"""Result shaper: cut an analysis result down to what a tier may see.

Top-level sections not in the tier's exposed fields are removed (absent, not
emptied). Container sections listed in GATED_SUBFIELDS are filtered one level
down as well: "communication.suggestions" only survives when the tier exposes
that dotted name. Other sub-keys travel with their parent.

shape() returns a new dict and never mutates its input; shaping an already
shaped result is a no-op.
"""

import copy

from src.tiers import GATED_SUBFIELDS, policy_for


def shape(result: dict, tier: str) -> dict:
    policy = policy_for(tier)
    shaped = {}
    for key, value in result.items():
        if not policy.exposes(key):
            continue
        gated = GATED_SUBFIELDS.get(key)
        if gated and isinstance(value, dict):
            value = {
                sub: sub_value
                for sub, sub_value in value.items()
                if sub not in gated or policy.exposes(f"{key}.{sub}")
            }
        shaped[key] = copy.deepcopy(value)
    return shaped

