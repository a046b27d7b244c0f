import re
from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    获取当前 UTC 时间（带时区）
    """
    return datetime.now(timezone.utc)


def truncate(s: str, limit: int) -> str:
    """按字符截断，超长时末尾加省略号"""
    if s is None:
        return ""
    return s if len(s) <= limit else s[:limit - 1] + "…"


_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(s: str) -> str:
    """去掉 HTML 标签并压缩空白，RSS 描述里常见"""
    if not s:
        return ""
    return " ".join(_TAG_RE.sub(" ", s).split())
