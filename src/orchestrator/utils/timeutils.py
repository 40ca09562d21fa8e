# orchestrator/utils/timeutils.py

from datetime import datetime, timezone
from typing import Optional

def utcnow() -> datetime:
    """
    数据库中统一存放不带时区的 UTC 时间。
    SQLite 不保存时区信息，混用 aware/naive 会在比较时直接抛 TypeError。
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

def to_aware_utc(value: datetime) -> datetime:
    # arq 用 dt.timestamp() 计算延迟，naive 时间会被当成本地时间
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
