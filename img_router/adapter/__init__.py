"""
Adapter module for img-router
各渠道的适配器实现
"""

from .gitee_adapter import GiteeAdapter
from .huggingface_adapter import HuggingFaceAdapter
from .modelscope_adapter import ModelScopeAdapter
from .volcengine_adapter import VolcEngineAdapter

__all__ = [
    "GiteeAdapter",
    "HuggingFaceAdapter",
    "ModelScopeAdapter",
    "VolcEngineAdapter",
]
