"""
img-router
根据 API Key 格式将 chat.completions 请求分发到不同的图像生成渠道
"""

__version__ = "1.0.0"
