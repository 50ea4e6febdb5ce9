import sys
from pathlib import Path
import os


# Ensure project src is on path for imports in tests
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (ROOT, SRC):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

# Keep tests hermetic: no real credentials, and fixed policy defaults
os.environ["GEMINI_API_KEY"] = ""
os.environ["VIRUSTOTAL_API_KEY"] = ""
os.environ["FACT_CHECK_API_KEY"] = ""
os.environ.setdefault("MALICIOUS_ESCALATION_THRESHOLD", "5")
