from .log_masking import MaskingFormatter, mask_sensitive
from .rpc_client import ChainRpcClient

__all__ = ["ChainRpcClient", "MaskingFormatter", "mask_sensitive"]
