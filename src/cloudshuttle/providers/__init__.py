"""
Storage provider adapters.

Each adapter wraps one backend family behind the ProviderAdapter interface.
Vendor SDKs are imported lazily by their adapter module; a missing SDK only
disables that backend.
"""

from .base import Capabilities, ProviderAdapter
from .cos import CosAdapter
from .lsky import LskyAdapter
from .oss import OssAdapter
from .s3compat import S3CompatAdapter
from .smms import SmmsAdapter
from ..models import ProviderType

ADAPTERS = {
    ProviderType.S3COMPAT: S3CompatAdapter,
    ProviderType.OSS: OssAdapter,
    ProviderType.COS: CosAdapter,
    ProviderType.SMMS: SmmsAdapter,
    ProviderType.LSKY: LskyAdapter,
}

__all__ = [
    "ADAPTERS",
    "Capabilities",
    "CosAdapter",
    "LskyAdapter",
    "OssAdapter",
    "ProviderAdapter",
    "S3CompatAdapter",
    "SmmsAdapter",
]
