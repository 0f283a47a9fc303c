import sys, pytest
from pathlib import Path
from .kernel_utils import fake_config
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path: sys.path.insert(0, str(ROOT))


@pytest.fixture
def fake_cfg(tmp_path):
    "Config launching the fake kernel with connection files under `tmp_path`."
    return fake_config(tmp_path)
