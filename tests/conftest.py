import os
import sys
from pathlib import Path

os.environ.setdefault("IC_WEB3_CANISTER_ID", "rrkah-fqaaa-aaaaa-aaaaq-cai")
os.environ.setdefault("IC_WEB3_KEY_NAME", "dfx_test_key")
os.environ.setdefault("IC_WEB3_RPC_URL", "http://localhost:8545")

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))
