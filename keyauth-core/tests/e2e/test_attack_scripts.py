"""Run the attack demos end to end; each must exit 0 (attack blocked)."""
import subprocess
import sys
from pathlib import Path

import pytest


_ATTACKS_DIR = Path(__file__).parents[3] / "examples" / "attacks"


@pytest.mark.parametrize("script", ["tamper_signature.py", "replay_response.py"])
def test_attack_is_blocked(script) -> None:
    result = subprocess.run(
        [sys.executable, str(_ATTACKS_DIR / script)],
        capture_output=True,
        text=True,
        timeout=120,
    )
    assert result.returncode == 0, result.stdout + result.stderr
    assert "BLOCKED" in result.stdout
