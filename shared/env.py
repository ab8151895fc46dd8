import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def load_env(root: Optional[Path]):
    if root is None:
        return
    # Base .env
    load_dotenv(root / ".env", override=False)
    # Runtime settings
    load_dotenv(root / "config/pegwatch.runtime.env", override=False)
    # Secrets
    load_dotenv(root / "secrets/.env.runtime", override=False)
    # Export root for portability
    os.environ.setdefault("PEGWATCH_ROOT", str(root))
