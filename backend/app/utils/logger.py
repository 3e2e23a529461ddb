import logging
import sys
from typing import Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("ops_dashboard")


def mask_token(token: Optional[str], show_start: int = 6, show_end: int = 4) -> str:
    """Mask an OAuth token for log output."""
    if not token:
        return "None"

    if len(token) <= show_start + show_end:
        return token[:show_start] + "***"

    return token[:show_start] + "***" + token[-show_end:]
