"""常量定义模块。

集中管理项目中使用的常量，避免魔法字符串分散在代码中。
"""

from __future__ import annotations

# ========================== 日志常量 ==========================

LOG_PREFIX = "[ImgRouter]"
"""统一的日志前缀。"""


# ========================== 服务配置 ==========================

SERVICE_NAME = "img-router"

DEFAULT_HOST = "0.0.0.0"

DEFAULT_PORT = 10001
"""服务默认端口。"""

DEFAULT_TIMEOUT = 300
"""统一请求超时时间（秒），给生图留足时间。"""

DEFAULT_FETCH_TIMEOUT = 30
"""下载 / 上传图片的超时时间（秒）。"""

DEFAULT_CONVERSION_CONCURRENCY = 4
"""单次请求内图片转换的最大并发数。"""

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"

DEFAULT_PROMPT = "A beautiful scenery"
"""提示词为空时使用的兜底提示词。"""


# ========================== 图床配置 ==========================

IMGBED_DEFAULT_BASE_URL = "https://imgbed.lianwusuoai.top"
"""CloudFlare ImgBed 图床地址，用于将 Base64 图片转换为 URL。"""

IMGBED_DEFAULT_UPLOAD_ENDPOINT = "/upload"

IMGBED_DEFAULT_UPLOAD_FOLDER = "img-router"

IMGBED_DEFAULT_UPLOAD_CHANNEL = "s3"
"""上传渠道（telegram、cfr2、s3）。"""

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
}
"""上传图床时 MIME 类型到扩展名的映射。"""

SUFFIX_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}


# ========================== 渠道 API 端点 ==========================

VOLCENGINE_API_URL = "https://ark.cn-beijing.volces.com/api/v3/images/generations"

GITEE_API_URL = "https://ai.gitee.com/v1/images/generations"
GITEE_EDIT_API_URL = "https://ai.gitee.com/v1/images/edits"
GITEE_ASYNC_EDIT_API_URL = "https://ai.gitee.com/v1/async/images/edits"
GITEE_TASK_STATUS_URL = "https://ai.gitee.com/v1/task"

MODELSCOPE_API_URL = "https://api-inference.modelscope.cn/v1"

HUGGINGFACE_API_URLS = (
    "https://luca115-z-image-turbo.hf.space",
    "https://linoyts-z-image-portrait.hf.space",
    "https://prokofyev8-z-image-portrait.hf.space",
    "https://yingzhac-z-image-nsfw.hf.space",
)
"""HF 文生图 URL 资源池，按优先级排序。"""

HUGGINGFACE_EDIT_API_URLS = ("https://lenml-qwen-image-edit-2511-fast.hf.space",)
"""HF 图生图 / 融合生图 URL 资源池。"""

TRUSTED_VENDOR_HOSTS = (
    "volces.com",
    "volccdn.com",
    "ai.gitee.com",
    "gitee.com",
    "modelscope.cn",
    "hf.space",
    "huggingface.co",
)
"""官方渠道域名（含子域名），不经过 SSRF 检查。"""


# ========================== 模型目录 ==========================

VOLCENGINE_MODELS = (
    "doubao-seedream-4-5-251128",
    "doubao-seedream-4-0-250828",
)

GITEE_MODELS = ("z-image-turbo",)

GITEE_EDIT_MODELS = (
    "Qwen-Image-Edit",
    "HiDream-E1-Full",
    "FLUX.1-dev",
    "FLUX.2-dev",
    "FLUX.1-Kontext-dev",
    "HelloMeme",
    "Kolors",
    "OmniConsistency",
    "InstantCharacter",
    "DreamO",
    "LongCat-Image-Edit",
    "AnimeSharp",
)
"""Gitee 图片编辑（同步）模型，第一个为默认。"""

GITEE_ASYNC_EDIT_MODELS = (
    "Qwen-Image-Edit-2511",
    "LongCat-Image-Edit",
    "FLUX.1-Kontext-dev",
)
"""Gitee 图片编辑（异步）模型，第一个为默认。"""

MODELSCOPE_MODELS = ("Tongyi-MAI/Z-Image-Turbo",)

MODELSCOPE_EDIT_MODELS = ("Qwen/Qwen-Image-Edit-2511",)

HUGGINGFACE_MODELS = ("z-image-turbo",)

HUGGINGFACE_EDIT_MODELS = ("Qwen-Image-Edit-2511",)


# ========================== 轮询参数 ==========================

MODELSCOPE_POLL_INTERVAL = 5.0
MODELSCOPE_POLL_ATTEMPTS = 60

GITEE_POLL_INTERVAL = 3.0
GITEE_POLL_ATTEMPTS = 100

HUGGINGFACE_POLL_INTERVAL = 1.0
HUGGINGFACE_POLL_ATTEMPTS = 3
"""HF 每个候选节点读取结果事件流的次数上限。"""
