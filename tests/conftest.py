"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add project src to Python path so tests run without an editable install
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(src_path))

import pytest

from entitlements.core.contracts import ERC20Token

TOKEN_OWNER = "0x" + "0f" * 20


@pytest.fixture
def token():
    """Fresh in-memory token; mint with ``token.mint(token.owner, to, amount)``."""
    return ERC20Token(name="Entitlement", symbol="ENT", address="0x" + "70" * 20, owner=TOKEN_OWNER)
