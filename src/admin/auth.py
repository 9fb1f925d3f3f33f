from __future__ import annotations

import hmac

from config.settings import ADMIN_AUTH_TOKEN
from fastapi import HTTPException, Request
from logger import logger


def extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    token_header = request.headers.get("X-Chime-Token", "").strip()
    return token_header or None


def make_admin_auth(expected_token: str = ADMIN_AUTH_TOKEN):
    """生成鉴权依赖；expected_token 为空时管理 API 不可访问"""
    if not expected_token:
        logger.warning("未配置 ADMIN_AUTH_TOKEN，管理 API 将不可访问")

    async def require_admin_auth(request: Request) -> dict[str, str]:
        if not expected_token:
            raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

        token = extract_token(request)
        if token and hmac.compare_digest(token, expected_token):
            return {"auth": "token", "user": "admin-token"}

        raise HTTPException(status_code=401, detail="未授权")

    return require_admin_auth
