"""Provider routing by credential shape."""

from __future__ import annotations

import logging
import re

from .constants import LOG_PREFIX
from .errors import AuthenticationError
from .types import ProviderIdentity

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
GITEE_PATTERN = re.compile(r"^[a-zA-Z0-9]{30,60}$")


def detect_provider(credential: str | None) -> ProviderIdentity:
    """根据 API Key 格式判断渠道，按顺序匹配，第一个命中的规则生效。"""
    if not credential:
        return ProviderIdentity.UNKNOWN

    if credential.startswith("hf_"):
        provider = ProviderIdentity.HUGGINGFACE
    elif credential.startswith("ms-"):
        provider = ProviderIdentity.MODELSCOPE
    elif UUID_PATTERN.match(credential):
        provider = ProviderIdentity.VOLCENGINE
    elif GITEE_PATTERN.match(credential):
        provider = ProviderIdentity.GITEE
    else:
        provider = ProviderIdentity.UNKNOWN

    logger.info(f"{LOG_PREFIX} [Router] {credential[:4]}**** -> {provider.value}")
    return provider


def extract_credential(authorization: str | None) -> str:
    """从 Authorization 头中取出凭证。"""
    if not authorization:
        return ""
    value = authorization.strip()
    if value[:7].lower() == "bearer ":
        value = value[7:]
    return value.strip()


def resolve_provider(authorization: str | None) -> tuple[str, ProviderIdentity]:
    """解析凭证并判断渠道，缺失或无法识别时抛出 AuthenticationError。"""
    credential = extract_credential(authorization)
    if not credential:
        raise AuthenticationError("Authorization header missing")

    provider = detect_provider(credential)
    if provider is ProviderIdentity.UNKNOWN:
        raise AuthenticationError("Invalid API Key format. Could not detect provider.")
    return credential, provider
