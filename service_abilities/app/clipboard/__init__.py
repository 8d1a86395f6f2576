"""
Clipboard package.

The clipboard answers "may this authority do this?". Requests are
compiled into candidate ability identifiers, most specific first, and
matched against the authority's forbidden and allowed abilities.

Modules of interest:
- models: Ability and Entity records plus the API request/response models.
- identifiers: Identifier compilation and first-match lookup.
- ownership: Rules deciding whether an authority owns a target.
- engine: The uncached clipboard (decision engine).
"""

from .engine import Clipboard
from .identifiers import compile_ability_identifiers, get_matched_ability_id
from .models import Ability, Entity
from .ownership import Ownership

__all__ = [
    "Ability",
    "Clipboard",
    "Entity",
    "Ownership",
    "compile_ability_identifiers",
    "get_matched_ability_id",
]
