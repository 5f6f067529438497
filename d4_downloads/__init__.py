"""D4 Downloads - expiring, bounded-use download tokens"""

from .models import DownloadToken
from .tokens import DownloadTokenIssuer

__all__ = ["DownloadToken", "DownloadTokenIssuer"]
